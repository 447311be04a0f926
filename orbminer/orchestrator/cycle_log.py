from __future__ import annotations

import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from orbminer.config import repo_root
from orbminer.orchestrator.state_machine import OperationCycleResult


class CycleLogger:
    def __init__(self, base_dir: Optional[Path] = None, console: Optional[Console] = None) -> None:
        base = Path(base_dir) if base_dir else repo_root() / "runs"
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
        self.run_dir = base / timestamp
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.run_dir / "cycles.jsonl"
        self._file = self.path.open("a", encoding="utf-8")
        self._entries: List[Dict[str, Any]] = []
        self.console = console or Console()

    def __call__(self, result: OperationCycleResult) -> None:
        self.log(result)

    def log(self, result: OperationCycleResult) -> None:
        entry = result.as_dict()
        self._entries.append(entry)
        self._file.write(json.dumps(entry, sort_keys=True) + "\n")
        self._file.flush()

    def result_counts(self) -> Dict[str, int]:
        return dict(Counter(entry.get("kind") for entry in self._entries))

    def summarize(self) -> None:
        table = Table(title="Cycle Summary")
        table.add_column("Result")
        table.add_column("Count", justify="right")
        table.add_column("Simulated", justify="right")
        simulated = Counter(entry.get("kind") for entry in self._entries if entry.get("simulated"))
        for kind, count in Counter(entry.get("kind") for entry in self._entries).most_common():
            table.add_row(str(kind), str(count), str(simulated.get(kind, 0)))
        self.console.print(table)

    def write_summary(self) -> Path:
        signatures = [entry["signature"] for entry in self._entries if entry.get("signature")]
        summary = {
            "cycles": len(self._entries),
            "results": self.result_counts(),
            "signatures": signatures,
            "deployed_lamports": sum(
                int(entry.get("amount", 0)) for entry in self._entries if entry.get("kind") == "Deployed"
            ),
        }
        path = self.run_dir / "run_summary.json"
        path.write_text(json.dumps(summary, indent=2, sort_keys=True), encoding="utf-8")
        return path

    def close(self) -> None:
        self._file.close()


__all__ = ["CycleLogger"]
