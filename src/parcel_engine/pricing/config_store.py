"""Versioned, hot-reloadable pricing configuration store.

The store hands out immutable PricingConfigVersion snapshots. Callers pass
``snapshot.payload`` into the fare calculator explicitly, so a request that
started on version N keeps pricing on version N even if version N+1 is
published mid-flight.
"""

import json
import logging
import os
import tempfile
import threading
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import ConfigurationError, NotFoundError
from .config import PricingConfig, PricingConfigVersion, validate_pricing_config

logger = logging.getLogger(__name__)


class PricingConfigStore:
    """Holds every known pricing config version; exactly one is active."""

    def __init__(self, path: Path | str | None = None):
        self._path = Path(path) if path is not None else None
        self._versions: dict[int, PricingConfigVersion] = {}
        self._active_version: int | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: Path | str) -> "PricingConfigStore":
        store = cls(path)
        store.reload()
        return store

    @classmethod
    def from_config(cls, config: PricingConfig, created_by: str = "system") -> "PricingConfigStore":
        """In-memory store seeded with a single active version."""
        store = cls()
        store.publish(config, created_by=created_by)
        return store

    @property
    def path(self) -> Path | None:
        return self._path

    def get_active(self) -> PricingConfigVersion:
        with self._lock:
            if self._active_version is None:
                raise ConfigurationError("No active pricing configuration loaded")
            return self._versions[self._active_version]

    def get_version(self, version: int) -> PricingConfigVersion:
        with self._lock:
            found = self._versions.get(version)
        if found is None:
            raise NotFoundError(f"Pricing config version {version} not found")
        return found

    def list_versions(self) -> list[PricingConfigVersion]:
        with self._lock:
            return [self._versions[v] for v in sorted(self._versions)]

    def reload(self) -> PricingConfigVersion:
        """Re-read the backing file and activate it.

        On any failure the previously active version stays in place.
        """
        if self._path is None:
            raise ConfigurationError("Pricing config store has no backing file")

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConfigurationError(f"Pricing config file not found: {self._path}") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Pricing config file is not valid JSON: {e}") from e

        loaded = self._parse_document(raw)

        with self._lock:
            current = self._versions.get(self._active_version) if self._active_version else None
            if current is not None and current.checksum == loaded.checksum:
                logger.debug(f"Pricing config v{current.version} unchanged on reload")
                return current
            self._check_reload_version(loaded, current)
            self._activate(loaded)

        logger.info(
            f"Loaded pricing config v{loaded.version} from {self._path} "
            f"(checksum={loaded.checksum[:12]})"
        )
        return loaded

    def publish(
        self,
        payload: PricingConfig | dict[str, Any],
        created_by: str = "system",
        effective_from: datetime | None = None,
    ) -> PricingConfigVersion:
        """Validate and activate a new version; the previous one becomes inactive."""
        config = self._coerce_payload(payload)
        now = datetime.now(UTC)

        with self._lock:
            next_version = max(self._versions, default=0) + 1
            published = PricingConfigVersion(
                id=str(uuid.uuid4()),
                version=next_version,
                status="active",
                effective_from=effective_from or now,
                checksum=config.checksum(),
                payload=config,
                created_at=now,
                created_by=created_by,
            )
            self._activate(published)

        if self._path is not None:
            self._write(published)

        logger.info(f"Published pricing config v{published.version} by {created_by}")
        return published

    def _check_reload_version(
        self, loaded: PricingConfigVersion, current: PricingConfigVersion | None
    ) -> None:
        """Must be called under _lock.

        Published versions are immutable: orders keep a reference to the
        version they were priced under.
        """
        if current is not None and loaded.version < current.version:
            raise ConfigurationError(
                f"Pricing config v{loaded.version} is older than active v{current.version}",
                details={"version": loaded.version, "active_version": current.version},
            )
        known = self._versions.get(loaded.version)
        if known is not None and known.checksum != loaded.checksum:
            raise ConfigurationError(
                f"Pricing config v{loaded.version} already exists with a different payload",
                details={"version": loaded.version, "checksum": known.checksum},
            )

    def _activate(self, version: PricingConfigVersion) -> None:
        """Must be called under _lock."""
        if self._active_version is not None and self._active_version != version.version:
            previous = self._versions[self._active_version]
            self._versions[previous.version] = previous.model_copy(update={"status": "inactive"})
        self._versions[version.version] = version.model_copy(update={"status": "active"})
        self._active_version = version.version

    @staticmethod
    def _coerce_payload(payload: PricingConfig | dict[str, Any]) -> PricingConfig:
        if isinstance(payload, PricingConfig):
            return payload
        errors = validate_pricing_config(payload)
        if errors:
            raise ConfigurationError("Invalid pricing configuration", details={"errors": errors})
        return PricingConfig.model_validate(payload)

    @classmethod
    def _parse_document(cls, raw: dict[str, Any]) -> PricingConfigVersion:
        if "payload" not in raw:
            raise ConfigurationError("Pricing config document has no payload")

        config = cls._coerce_payload(raw["payload"])
        checksum = config.checksum()
        declared = raw.get("checksum") or ""
        if declared and declared != checksum:
            raise ConfigurationError(
                "Pricing config checksum mismatch",
                details={"declared": declared, "computed": checksum},
            )

        now = datetime.now(UTC)
        try:
            return PricingConfigVersion(
                id=raw.get("id") or str(uuid.uuid4()),
                version=raw.get("version", 1),
                status="active",
                effective_from=raw.get("effective_from") or now,
                checksum=checksum,
                payload=config,
                created_at=raw.get("created_at") or now,
                created_by=raw.get("created_by", "system"),
            )
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid pricing config metadata: {e}") from e

    def _write(self, version: PricingConfigVersion) -> None:
        assert self._path is not None
        document = version.model_dump(mode="json")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.write("\n")
            os.replace(tmp_name, self._path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
