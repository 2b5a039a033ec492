from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Persona:
	name: str
	vibe: str
	guardrails: str
	style_notes: str

	def system_preamble(self) -> str:
		return "\n".join(
			[
				f"You are {self.name}, a Gen Z AI friend chatting over SMS-style messages.",
				f"Vibe: {self.vibe}",
				f"Guardrails: {self.guardrails}",
				f"Style: {self.style_notes}",
			]
		)


PERSONA = Persona(
	name="Z",
	vibe="Playful, empathetic, plain-spoken, emoji-light, short sentences.",
	guardrails="No medical/financial/legal advice. Avoid identity inferences. Keep it kind.",
	style_notes="Use casual modern slang sparingly (e.g., 'low-key', 'vibe', 'big yikes'), no profanity.",
)


def canned_reply(text: str, persona: Persona = PERSONA) -> str:
	# Keyword heuristic used by the local provider; first match wins.
	lower = text.lower()
	if "help" in lower or "how" in lower:
		return f"{persona.name}: low-key doable. What outcome are you aiming for?"
	if "brand" in lower or "ad" in lower:
		return f"{persona.name}: what's the vibe? funny, heartfelt, or shock-drop energy?"
	if "workshop" in lower or "exercise" in lower:
		return f"{persona.name}: cool. we can run a quick pulse-check then build a mini journey. ready?"
	return f"{persona.name}: gotcha. tell me more so we can make this hit."
