"""Built-in holiday definitions and category metadata."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from hilal.domain.models import HijriMonth, HolidayCategory, HolidayDefinition, ThemeId


class CategoryMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    label_en: str
    label_ar: str
    icon: str


# Every HolidayCategory member must have an entry here.
CATEGORY_META: dict[HolidayCategory, CategoryMeta] = {
    HolidayCategory.RELIGIOUS: CategoryMeta(label_en="Religious", label_ar="دينية", icon="🕌"),
    HolidayCategory.NATIONAL: CategoryMeta(label_en="National", label_ar="وطنية", icon="🇸🇦"),
}


HIJRI_MONTH_NAMES: dict[HijriMonth, str] = {
    HijriMonth.MUHARRAM: "محرم",
    HijriMonth.SAFAR: "صفر",
    HijriMonth.RABI_AL_AWWAL: "ربيع الأول",
    HijriMonth.RABI_AL_THANI: "ربيع الثاني",
    HijriMonth.JUMADA_AL_ULA: "جمادى الأولى",
    HijriMonth.JUMADA_AL_THANI: "جمادى الآخرة",
    HijriMonth.RAJAB: "رجب",
    HijriMonth.SHABAN: "شعبان",
    HijriMonth.RAMADAN: "رمضان",
    HijriMonth.SHAWWAL: "شوال",
    HijriMonth.DHU_AL_QADAH: "ذو القعدة",
    HijriMonth.DHU_AL_HIJJAH: "ذو الحجة",
}


SAUDI_HOLIDAYS: tuple[HolidayDefinition, ...] = (
    HolidayDefinition(
        event_id="ramadan",
        name_en="Ramadan",
        name_ar="رمضان",
        hijri_day=1,
        hijri_month=HijriMonth.RAMADAN,
        icon="🌙",
        theme=ThemeId.RAMADAN,
        category=HolidayCategory.RELIGIOUS,
    ),
    HolidayDefinition(
        event_id="eid-fitr",
        name_en="Eid Al-Fitr",
        name_ar="عيد الفطر",
        hijri_day=1,
        hijri_month=HijriMonth.SHAWWAL,
        icon="🎉",
        theme=ThemeId.GOLD,
        category=HolidayCategory.RELIGIOUS,
    ),
    HolidayDefinition(
        event_id="eid-adha",
        name_en="Eid Al-Adha",
        name_ar="عيد الأضحى",
        hijri_day=10,
        hijri_month=HijriMonth.DHU_AL_HIJJAH,
        icon="🐑",
        theme=ThemeId.GOLD,
        category=HolidayCategory.RELIGIOUS,
    ),
    HolidayDefinition(
        event_id="islamic-new-year",
        name_en="Islamic New Year",
        name_ar="رأس السنة الهجرية",
        hijri_day=1,
        hijri_month=HijriMonth.MUHARRAM,
        icon="🌟",
        theme=ThemeId.NIGHT,
        category=HolidayCategory.RELIGIOUS,
    ),
)


def get_holiday(event_id: str) -> HolidayDefinition | None:
    for definition in SAUDI_HOLIDAYS:
        if definition.event_id == event_id:
            return definition
    return None


def format_hijri_date(day: int, month: HijriMonth, year: int) -> str:
    return f"{day} {HIJRI_MONTH_NAMES[month]} {year}"
