from __future__ import annotations

from typing import Optional

from ..store.preferences import AssignPromptPreferences


class AssignmentPrompter:
    """Decide quando sugerir ao operador assumir uma conversa sem responsável.

    A sugestão aparece na primeira resposta da sessão e depois a cada
    ``every`` respostas, exceto quando o operador optou por não ser perguntado
    naquele contato.
    """

    def __init__(self, preferences: AssignPromptPreferences, *, every: int = 10):
        if every <= 0:
            raise ValueError("every deve ser positivo")
        self._preferences = preferences
        self._every = every
        self._replies: dict[tuple[str, str], int] = {}

    def replies(self, operator_id: str, contact_id: str) -> int:
        return self._replies.get((operator_id, contact_id), 0)

    def on_reply_sent(self, operator_id: str, contact_id: str, assignee_id: Optional[str]) -> bool:
        key = (operator_id, contact_id)
        count = self._replies.get(key, 0) + 1
        self._replies[key] = count
        if assignee_id:
            return False
        if self._preferences.opted_out(operator_id, contact_id):
            return False
        return (count - 1) % self._every == 0

    def opt_out(self, operator_id: str, contact_id: str) -> None:
        self._preferences.opt_out(operator_id, contact_id)
