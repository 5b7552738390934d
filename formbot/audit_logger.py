from __future__ import annotations

from pathlib import Path

from formbot.event_bus import EventBus, FormbotEvent


class AuditLogger:
    """
    Subscribes to an EventBus and appends every event to a JSONL file.
    """

    def __init__(self, file_path: Path, event_bus: EventBus):
        self.file_path = Path(file_path)
        self.event_bus = event_bus

        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        self.event_bus.subscribe(self.log_event)

    def log_event(self, event: FormbotEvent) -> None:
        with open(self.file_path, "a", encoding="utf-8") as f:
            f.write(event.model_dump_json() + "\n")

    def read(self) -> list[FormbotEvent]:
        if not self.file_path.exists():
            return []
        with open(self.file_path, "r", encoding="utf-8") as f:
            return [FormbotEvent.model_validate_json(line) for line in f if line.strip()]
