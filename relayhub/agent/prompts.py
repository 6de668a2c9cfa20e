from __future__ import annotations

from relayhub.domain.events import CHANNEL_WIDGET, Channel


def build_system_prompt(*, tenant_name: str, context: str, channel: Channel) -> str:
    # The widget keeps the short website-assistant prompt; messaging gets explicit instructions.
    if channel == CHANNEL_WIDGET:
        return (
            f"You are Blockscom website assistant for {tenant_name}. "
            f"Use this knowledge base:\n{context}"
        )
    return (
        f'You are a helpful AI assistant for the Facebook page "{tenant_name}".\n\n'
        f"KNOWLEDGE BASE:\n{context}\n\n"
        "INSTRUCTIONS:\n"
        "- Answer based on the knowledge base and product catalog if relevant.\n"
        "- If a user asks about products, recommend items from the catalog.\n"
        "- Be polite and professional.\n"
        "- Keep answers concise for chat.\n"
    )


def build_messages(system_prompt: str, user_text: str) -> list[dict[str, str]]:
    # Exactly one system and one user message; no conversation history is relayed.
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_text},
    ]
