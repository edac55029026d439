from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

DEFAULT_METRICS_PATH = Path("data/metrics.json")


def write_metrics(data: Dict[str, Any], path: Path = DEFAULT_METRICS_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)  # atomic replace


def read_metrics(path: Path = DEFAULT_METRICS_PATH) -> Dict[str, Any]:
    if not path.exists():
        return {"connected": False, "message": "metrics not yet available"}
    return json.loads(path.read_text(encoding="utf-8"))
