"""
HolidayCalendarService -- organization holiday calendar.

Consulted by RecurringScheduleService when a schedule skips holidays.
One holiday per date per organization.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import extract, select

from ledger_kernel.domain.audit import AuditAction
from ledger_kernel.exceptions import DuplicateHolidayError, HolidayNotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.recurring import Holiday
from ledger_kernel.services.base import BaseService

logger = get_logger("services.holiday")

_RESOURCE = "holiday"


class HolidayCalendarService(BaseService[Holiday]):
    def add_holiday(
        self,
        holiday_date: date,
        name: str,
        *,
        is_banking_holiday: bool = True,
        country_code: str | None = None,
    ) -> Holiday:
        exists = self.session.execute(
            select(Holiday.id).where(
                Holiday.organization_id == self.organization_id,
                Holiday.holiday_date == holiday_date,
            )
        ).first()
        if exists is not None:
            raise DuplicateHolidayError(str(holiday_date))

        holiday = Holiday(
            organization_id=self.organization_id,
            holiday_date=holiday_date,
            name=name,
            is_banking_holiday=is_banking_holiday,
            country_code=country_code or self._settings.default_country_code,
            created_by_id=self.actor_id,
        )
        self.session.add(holiday)
        self.session.flush()

        logger.info("holiday_added", extra={"holiday_date": holiday_date, "holiday_name": name})
        self._record_audit(AuditAction.HOLIDAY_ADDED, _RESOURCE, holiday.id, holiday_date=holiday_date, name=name)
        return holiday

    def delete_holiday(self, holiday_id: UUID) -> None:
        holiday = self.session.execute(
            select(Holiday).where(
                Holiday.id == holiday_id,
                Holiday.organization_id == self.organization_id,
            )
        ).scalar_one_or_none()
        if holiday is None:
            raise HolidayNotFoundError(str(holiday_id))

        holiday_date = holiday.holiday_date
        self.session.delete(holiday)
        self.session.flush()

        logger.info("holiday_deleted", extra={"holiday_date": holiday_date})
        self._record_audit(AuditAction.HOLIDAY_DELETED, _RESOURCE, holiday_id, holiday_date=holiday_date)

    def list_holidays(self, year: int | None = None) -> list[Holiday]:
        query = select(Holiday).where(Holiday.organization_id == self.organization_id)
        if year is not None:
            query = query.where(extract("year", Holiday.holiday_date) == year)
        return list(self.session.execute(query.order_by(Holiday.holiday_date)).scalars())

    def holiday_dates(self, start: date, end: date) -> set[date]:
        """Holiday dates in [start, end]."""
        return set(
            self.session.execute(
                select(Holiday.holiday_date).where(
                    Holiday.organization_id == self.organization_id,
                    Holiday.holiday_date >= start,
                    Holiday.holiday_date <= end,
                )
            ).scalars()
        )
