"""
Report and log artifacts.

Verification reports are written as indented JSON files, one per run,
named ``<name>-<epoch_ms>.json``. Alert and failure logs are appended as
JSON lines. Nothing here is ever read back by the system.
"""

import json
import time
from pathlib import Path
from typing import Callable, Protocol, runtime_checkable

from .enums import VerificationStatus
from .exceptions import PersistenceError
from .models import VerificationReport


@runtime_checkable
class ArtifactSink(Protocol):
    """Destination for reports and append-only logs."""

    def write_report(self, name: str, payload: dict) -> Path:
        ...

    def write_document(self, name: str, text: str, suffix: str = ".md") -> Path:
        ...

    def append_log(self, name: str, record: dict) -> Path:
        ...


class FileArtifactSink:
    """Writes artifacts under a reports directory and a logs directory."""

    def __init__(
        self,
        reports_dir: Path,
        logs_dir: Path,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._reports_dir = Path(reports_dir)
        self._logs_dir = Path(logs_dir)
        self._clock = clock

    @property
    def reports_dir(self) -> Path:
        return self._reports_dir

    @property
    def logs_dir(self) -> Path:
        return self._logs_dir

    def _stamp(self) -> int:
        return int(self._clock() * 1000)

    def write_report(self, name: str, payload: dict) -> Path:
        path = self._reports_dir / f"{name}-{self._stamp()}.json"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False, default=str)
        except (OSError, TypeError) as e:
            raise PersistenceError(
                code="write_failed",
                message=f"Could not write report {path}: {e}",
                details={"path": str(path)},
            ) from e
        return path

    def write_document(self, name: str, text: str, suffix: str = ".md") -> Path:
        path = self._reports_dir / f"{name}-{self._stamp()}{suffix}"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        except OSError as e:
            raise PersistenceError(
                code="write_failed",
                message=f"Could not write document {path}: {e}",
                details={"path": str(path)},
            ) from e
        return path

    def append_log(self, name: str, record: dict) -> Path:
        path = self._logs_dir / f"{name}.jsonl"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
        except (OSError, TypeError) as e:
            raise PersistenceError(
                code="append_failed",
                message=f"Could not append to {path}: {e}",
                details={"path": str(path)},
            ) from e
        return path


_STATUS_ICONS = {
    VerificationStatus.SUCCESS: "✅",
    VerificationStatus.TIMEOUT: "⏰",
    VerificationStatus.IN_PROGRESS: "⏳",
}


def _mark(ok: bool) -> str:
    return "✓" if ok else "✗"


def format_report(report: VerificationReport) -> str:
    """Human-readable summary of a verification report."""
    summary = report.summary
    lines = [
        "DNS VERIFICATION SUMMARY",
        "=" * 60,
        f"Domain:   {summary.fqdn}",
        f"Target:   {summary.target}",
        f"Status:   {_STATUS_ICONS.get(summary.status, '')} {summary.status.value.upper()}",
        f"Duration: {summary.duration_seconds:.1f}s",
        f"Checks:   {summary.total_checks}",
    ]

    state = report.final_state
    if state is not None:
        overall = state.overall
        lines.append("")
        lines.append(
            f"Final state: {overall.score}/{overall.total_checks} checks passed "
            f"({overall.percentage:.0f}%)"
        )
        lines.append(f"  {_mark(state.local.success)} Local DNS")
        lines.append(
            f"  {_mark(state.servers.success)} DNS servers "
            f"({state.servers.successful}/{state.servers.total})"
        )
        lines.append(f"  {_mark(state.online.success)} Online checkers")
        http_detail = f" (HTTP {state.http.status_code})" if state.http.status_code else ""
        lines.append(f"  {_mark(state.http.success)} HTTP{http_detail}")
        ssl_detail = (
            f" ({state.ssl.days_until_expiry} days left)"
            if state.ssl.days_until_expiry is not None
            else ""
        )
        lines.append(f"  {_mark(state.ssl.success)} SSL{ssl_detail}")

    if report.recommendations:
        lines.append("")
        lines.append("Recommendations:")
        for rec in report.recommendations:
            lines.append(f"  [{rec.priority.value.upper()}] {rec.message}")
            lines.append(f"      -> {rec.action}")

    if report.next_steps:
        lines.append("")
        lines.append("Next steps:")
        for i, step in enumerate(report.next_steps, 1):
            lines.append(f"  {i}. {step}")

    if report.artifact_path:
        lines.append("")
        lines.append(f"Report saved to: {report.artifact_path}")

    return "\n".join(lines)
