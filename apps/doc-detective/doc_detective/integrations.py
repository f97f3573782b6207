"""Hand changed artifacts back to the CMS they were sourced from."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Protocol

import structlog

from .results import FAIL, PASS, SKIPPED

LOGGER = structlog.get_logger("doc_detective", component="integrations")


class Uploader(Protocol):
    def can_handle(self, source_integration: dict[str, Any]) -> bool: ...

    def upload(
        self,
        *,
        config: dict[str, Any],
        integration_config: dict[str, Any],
        local_file_path: str,
        source_integration: dict[str, Any],
    ) -> dict[str, Any]: ...


@dataclass
class ChangedFile:
    local_path: str
    source_integration: dict[str, Any]
    step_id: Optional[str] = None
    test_id: Optional[str] = None
    spec_id: Optional[str] = None


@dataclass
class UploadSummary:
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "details": self.details,
        }


def collect_changed_files(specs: list[dict[str, Any]]) -> list[ChangedFile]:
    """Screenshots that changed and carry a ``sourceIntegration`` descriptor."""

    changed = []
    for spec in specs:
        for test in spec.get("tests", []):
            for context in test.get("contexts", []):
                for step in context.get("steps", []):
                    outputs = step.get("outputs") or {}
                    if "screenshot" in step and outputs.get("changed") is True and outputs.get("sourceIntegration"):
                        changed.append(
                            ChangedFile(
                                local_path=outputs["screenshotPath"],
                                source_integration=outputs["sourceIntegration"],
                                step_id=step.get("stepId"),
                                test_id=test.get("testId"),
                                spec_id=spec.get("specId"),
                            )
                        )
    return changed


def integration_config(config: dict[str, Any], source_integration: dict[str, Any]) -> Optional[dict[str, Any]]:
    kind = source_integration.get("type")
    name = source_integration.get("integrationName")
    if not kind or not name:
        return None
    entries = (config.get("integrations") or {}).get(kind) or []
    return next((entry for entry in entries if entry.get("name") == name), None)


def upload_changed_files(
    config: dict[str, Any],
    specs: list[dict[str, Any]],
    uploaders: Iterable[Uploader] = (),
) -> UploadSummary:
    """Offer each changed artifact to the first uploader that accepts it.

    Missing uploaders or integration settings count as skips; upload errors
    are recorded and never stop the remaining uploads.
    """

    uploaders = list(uploaders)
    summary = UploadSummary()
    changed_files = collect_changed_files(specs)
    summary.total = len(changed_files)
    if not changed_files:
        LOGGER.debug("no_changed_files")
        return summary

    for changed in changed_files:
        source = changed.source_integration
        log = LOGGER.bind(path=changed.local_path, integration=source.get("type"))
        uploader = next((candidate for candidate in uploaders if candidate.can_handle(source)), None)
        if uploader is None:
            log.warning("uploader_missing")
            summary.skipped += 1
            summary.details.append(
                {"localPath": changed.local_path, "status": SKIPPED, "reason": f"No uploader for type: {source.get('type')}"}
            )
            continue

        settings = integration_config(config, source)
        if settings is None:
            log.warning("integration_config_missing", name=source.get("integrationName"))
            summary.skipped += 1
            summary.details.append(
                {
                    "localPath": changed.local_path,
                    "status": SKIPPED,
                    "reason": f"No integration config found for: {source.get('integrationName')}",
                }
            )
            continue

        try:
            result = uploader.upload(
                config=config,
                integration_config=settings,
                local_file_path=changed.local_path,
                source_integration=source,
            )
        except Exception as exc:
            log.warning("upload_failed", error=str(exc))
            summary.failed += 1
            summary.details.append({"localPath": changed.local_path, "status": FAIL, "description": str(exc)})
            continue

        if result.get("status") == PASS:
            summary.successful += 1
            log.info("upload_succeeded")
        else:
            summary.failed += 1
            log.warning("upload_failed", description=result.get("description"))
        summary.details.append(
            {"localPath": changed.local_path, "status": result.get("status"), "description": result.get("description")}
        )

    LOGGER.info(
        "uploads_complete", successful=summary.successful, failed=summary.failed, skipped=summary.skipped
    )
    return summary
