from __future__ import annotations

from collections import OrderedDict
from typing import Iterable, Iterator


class RecencyIndex:
    """Lista de contatos ordenada por atividade recente; o topo é o índice 0.

    ``bubble`` move (ou insere) o contato para o topo em O(1).
    """

    def __init__(self, contact_ids: Iterable[str] = ()):
        self._order: "OrderedDict[str, None]" = OrderedDict()
        self.extend(contact_ids)

    def bubble(self, contact_id: str) -> None:
        if contact_id not in self._order:
            self._order[contact_id] = None
        self._order.move_to_end(contact_id, last=False)

    def extend(self, contact_ids: Iterable[str]) -> None:
        for contact_id in contact_ids:
            if contact_id not in self._order:
                self._order[contact_id] = None

    def discard(self, contact_id: str) -> None:
        self._order.pop(contact_id, None)

    def ordered(self) -> list[str]:
        return list(self._order)

    def __contains__(self, contact_id: object) -> bool:
        return contact_id in self._order

    def __iter__(self) -> Iterator[str]:
        return iter(self._order)

    def __len__(self) -> int:
        return len(self._order)
