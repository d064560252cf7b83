from __future__ import annotations

import json
import os
from typing import Optional

from ..errors import ConfigError


class AssignPromptPreferences:
    """Opção "não perguntar novamente" por (operador, contato).

    Vale no mínimo pela sessão; com ``path`` configurado é gravada em JSON e
    sobrevive a reinícios. Uma vez marcada, nunca é limpa.
    """

    def __init__(self, path: Optional[str] = None):
        self._path = path
        self._opted_out: set[tuple[str, str]] = set()
        if path:
            self._load(path)

    def opted_out(self, operator_id: str, contact_id: str) -> bool:
        return (operator_id, contact_id) in self._opted_out

    def opt_out(self, operator_id: str, contact_id: str) -> None:
        key = (operator_id, contact_id)
        if key in self._opted_out:
            return
        self._opted_out.add(key)
        if self._path:
            self._save(self._path)

    def entries(self) -> list[tuple[str, str]]:
        return sorted(self._opted_out)

    def _load(self, path: str) -> None:
        if not os.path.exists(path):
            return
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError("Falha ao ler preferências de atribuição.", details={"path": path, "error": str(e)})
        if not isinstance(data, dict):
            raise ConfigError("Formato inválido de preferências de atribuição.", details={"path": path})
        for item in data.get("optedOut") or []:
            if isinstance(item, dict) and item.get("operatorId") and item.get("contactId"):
                self._opted_out.add((str(item["operatorId"]), str(item["contactId"])))

    def _save(self, path: str) -> None:
        payload = {"optedOut": [{"operatorId": op, "contactId": c} for op, c in self.entries()]}
        tmp = f"{path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
