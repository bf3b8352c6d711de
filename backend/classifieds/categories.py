from __future__ import annotations

from dataclasses import dataclass, field

from .schemas import AdCategory, AdPayload, ApparelAd, FoodAd, HomeGoodsAd, JobAd, PropertyAd, VehicleAd

TEXT = "text"
EXACT = "exact"


@dataclass(frozen=True)
class FilterField:
    """A whitelisted listing filter.

    ``params`` are the query-string names feeding the field; more than one
    supplied value widens a text match to any of them.
    """

    name: str
    kind: str = TEXT
    params: tuple[str, ...] = ()

    def query_params(self) -> tuple[str, ...]:
        return self.params or (self.name,)


@dataclass(frozen=True)
class NotificationRule:
    title: str
    noun: str
    daily_cap: int


@dataclass(frozen=True)
class CategorySpec:
    category: AdCategory
    collection: str
    schema: type[AdPayload]
    daily_quota: int
    notification: NotificationRule | None
    filters: tuple[FilterField, ...] = ()
    single_image_fields: tuple[str, ...] = ()
    label: str = ""
    required_fields: tuple[str, ...] = field(init=False)

    def __post_init__(self) -> None:
        required = tuple(name for name, info in self.schema.model_fields.items() if info.is_required())
        object.__setattr__(self, "required_fields", required)

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(self.schema.model_fields)

    def notification_body(self, title: str) -> str:
        noun = self.notification.noun if self.notification else self.label
        return f'A new {noun} "{title}" was added.'


CATEGORIES: dict[AdCategory, CategorySpec] = {
    AdCategory.job: CategorySpec(
        category=AdCategory.job,
        collection="jobs",
        schema=JobAd,
        daily_quota=3,
        notification=NotificationRule(title="New job posted", noun="job", daily_cap=5),
        filters=(
            FilterField("title"),
            FilterField("jobTitle"),
            FilterField("location"),
            FilterField("paymentType", EXACT),
            FilterField("workingHours", EXACT),
        ),
        label="job",
    ),
    AdCategory.property: CategorySpec(
        category=AdCategory.property,
        collection="properties",
        schema=PropertyAd,
        daily_quota=5,
        notification=NotificationRule(title="New property listing", noun="property listing", daily_cap=5),
        filters=(
            FilterField("title"),
            FilterField("city"),
            FilterField("location"),
            FilterField("type", EXACT),
        ),
        label="property",
    ),
    AdCategory.vehicle: CategorySpec(
        category=AdCategory.vehicle,
        collection="vehicles",
        schema=VehicleAd,
        daily_quota=5,
        notification=NotificationRule(title="New vehicle listing", noun="vehicle listing", daily_cap=2),
        filters=(
            FilterField("title"),
            FilterField("brand"),
            FilterField("model"),
            FilterField("location"),
            FilterField("fuelType", EXACT),
            FilterField("adType", EXACT),
        ),
        single_image_fields=("registrationCardImage",),
        label="vehicle",
    ),
    AdCategory.apparel: CategorySpec(
        category=AdCategory.apparel,
        collection="apparel",
        schema=ApparelAd,
        daily_quota=5,
        notification=NotificationRule(title="New apparel listing", noun="apparel listing", daily_cap=2),
        filters=(
            FilterField("title"),
            FilterField("location"),
            FilterField("status", EXACT),
        ),
        label="apparel",
    ),
    AdCategory.food: CategorySpec(
        category=AdCategory.food,
        collection="food",
        schema=FoodAd,
        daily_quota=5,
        notification=None,
        filters=(
            FilterField("title"),
            FilterField("location"),
        ),
        label="food",
    ),
    AdCategory.home_goods: CategorySpec(
        category=AdCategory.home_goods,
        collection="home_goods",
        schema=HomeGoodsAd,
        daily_quota=5,
        notification=NotificationRule(title="Home & kitchen", noun="home goods listing", daily_cap=2),
        filters=(
            FilterField("title", params=("title", "title1", "title2")),
            FilterField("location", params=("location", "location1", "location2", "location3")),
            FilterField("section", EXACT),
        ),
        label="home goods",
    ),
}


def get_category(category: AdCategory | str) -> CategorySpec:
    return CATEGORIES[AdCategory(category)]
