import logging
from typing import Optional

from sqlalchemy.orm import Session

from models.mysql_models import Settings
from services.rate_service import (
    BillingRates,
    DEFAULT_RAM_RATE,
    DEFAULT_CPU_RATE,
    DEFAULT_DISK_RATE,
    DEFAULT_GRACE_PERIOD,
)

logger = logging.getLogger(__name__)

SETTINGS_ID = "main"


class SettingsService:
    def __init__(self, mysql_session: Session):
        self.mysql_session = mysql_session

    def _query(self) -> Optional[Settings]:
        return self.mysql_session.query(Settings).filter(
            Settings.id == SETTINGS_ID
        ).first()

    def init_settings(self) -> Settings:
        settings = self._query()

        if not settings:
            settings = Settings(
                id=SETTINGS_ID,
                billing_enabled=False,
                billing_ram_rate=DEFAULT_RAM_RATE,
                billing_cpu_rate=DEFAULT_CPU_RATE,
                billing_disk_rate=DEFAULT_DISK_RATE,
                billing_grace_period=DEFAULT_GRACE_PERIOD
            )
            self.mysql_session.add(settings)
            self.mysql_session.commit()
            logger.info("Created default settings")
            return settings

        # Rows written before real defaults existed carry 1/1/1 placeholders.
        if settings.billing_ram_rate == 1 and settings.billing_cpu_rate == 1 and settings.billing_disk_rate == 1:
            settings.billing_ram_rate = DEFAULT_RAM_RATE
            settings.billing_cpu_rate = DEFAULT_CPU_RATE
            settings.billing_disk_rate = DEFAULT_DISK_RATE
            self.mysql_session.commit()
            logger.info("Migrated billing rates to defaults")

        return settings

    def get_settings(self) -> Settings:
        settings = self._query()
        if not settings:
            settings = self.init_settings()
        return settings

    def get_billing_rates(self) -> BillingRates:
        """Snapshot the current billing configuration.

        Missing values fall back to the defaults. The result is not validated
        here; callers validate before computing a cost so that a bad rate is
        reported where it would have been used.
        """
        settings = self._query()
        if not settings:
            return BillingRates()

        return BillingRates(
            ram_rate=settings.billing_ram_rate if settings.billing_ram_rate is not None else DEFAULT_RAM_RATE,
            cpu_rate=settings.billing_cpu_rate if settings.billing_cpu_rate is not None else DEFAULT_CPU_RATE,
            disk_rate=settings.billing_disk_rate if settings.billing_disk_rate is not None else DEFAULT_DISK_RATE,
            grace_period=settings.billing_grace_period or DEFAULT_GRACE_PERIOD,
            billing_enabled=bool(settings.billing_enabled)
        )

    def update_billing_settings(
        self,
        billing_enabled: Optional[bool] = None,
        billing_ram_rate: Optional[float] = None,
        billing_cpu_rate: Optional[float] = None,
        billing_disk_rate: Optional[float] = None,
        billing_grace_period: Optional[int] = None
    ) -> dict:
        settings = self.get_settings()

        candidate = BillingRates(
            ram_rate=billing_ram_rate if billing_ram_rate is not None else settings.billing_ram_rate,
            cpu_rate=billing_cpu_rate if billing_cpu_rate is not None else settings.billing_cpu_rate,
            disk_rate=billing_disk_rate if billing_disk_rate is not None else settings.billing_disk_rate
        )
        candidate.validate()

        if billing_enabled is not None:
            settings.billing_enabled = billing_enabled
        settings.billing_ram_rate = candidate.ram_rate
        settings.billing_cpu_rate = candidate.cpu_rate
        settings.billing_disk_rate = candidate.disk_rate
        if billing_grace_period is not None:
            settings.billing_grace_period = billing_grace_period

        self.mysql_session.commit()
        return self.settings_to_dict(settings)

    def settings_to_dict(self, settings: Settings) -> dict:
        return {
            "billing_enabled": bool(settings.billing_enabled),
            "billing_ram_rate": settings.billing_ram_rate,
            "billing_cpu_rate": settings.billing_cpu_rate,
            "billing_disk_rate": settings.billing_disk_rate,
            "billing_grace_period": settings.billing_grace_period
        }
