"""
Faker-backed value generators.

Each generator honours the registry contract: a zero-argument callable
returning one replacement value. ``FakerGenerators`` keeps one seeded
Faker instance per locale so a seeded run is reproducible.
"""

import logging
from datetime import date
from typing import Any

from faker import Faker

from .config.rules import Generator
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en_US"

# Dotted provider paths accepted in rule files, mapped to Faker methods.
# Any other dotted path resolves to its last segment ("lorem.sentence" -> "sentence").
PROVIDER_ALIASES = {
    "person.name": "name",
    "person.first_name": "first_name",
    "person.last_name": "last_name",
    "person.date_of_birth": "date_of_birth",
    "internet.email": "email",
    "internet.user_name": "user_name",
    "phone.number": "phone_number",
    "phone_number.phone_number": "phone_number",
    "address.full": "address",
    "address.street": "street_address",
    "lorem.sentence": "sentence",
    "lorem.text": "text",
}


def resolve_provider_name(name: str) -> str:
    """Map a provider path from a rule file to the Faker method name."""
    if name in PROVIDER_ALIASES:
        return PROVIDER_ALIASES[name]
    return name.rsplit(".", 1)[-1]


class FakerGenerators:
    """Factory for generators bound to seeded Faker instances."""

    def __init__(self, seed: int | None = None, default_locale: str = DEFAULT_LOCALE):
        self.seed = seed
        self.default_locale = default_locale
        self._fakers: dict[str, Faker] = {}

    def faker(self, locale: str | None = None) -> Faker:
        """Return the (cached, seeded) Faker for ``locale``."""
        locale = locale or self.default_locale
        if locale not in self._fakers:
            try:
                fake = Faker(locale)
            except AttributeError as e:
                raise ConfigurationError(f"unsupported Faker locale: {locale!r}") from e
            if self.seed is not None:
                fake.seed_instance(self.seed)
            self._fakers[locale] = fake
        return self._fakers[locale]

    def provider(self, name: str, locale: str | None = None, **kwargs: Any) -> Generator:
        """
        Build a generator calling Faker provider method ``name``.

        Args:
            name: Faker method ("name", "email", "sentence") or dotted
                provider path ("person.name", "internet.email")
            locale: Faker locale (default: the factory's default locale)
            **kwargs: Keyword arguments passed on every call

        Raises:
            ConfigurationError: If Faker has no such provider method
        """
        fake = self.faker(locale)
        method_name = resolve_provider_name(name)
        try:
            method = getattr(fake, method_name)
        except AttributeError as e:
            raise ConfigurationError(
                f"unknown Faker provider {name!r} for locale {locale or self.default_locale}"
            ) from e
        if not callable(method):
            raise ConfigurationError(f"Faker attribute {name!r} is not a provider")

        def generate() -> Any:
            return method(**kwargs)

        generate.__name__ = f"faker_{method_name}"
        return generate

    def birthdate(self, min_age: int = 18, max_age: int = 45, locale: str | None = None) -> Generator:
        """Generator of birth dates for people aged ``min_age``..``max_age``."""
        if min_age > max_age:
            raise ConfigurationError(f"min_age {min_age} is greater than max_age {max_age}")
        fake = self.faker(locale)

        def generate() -> date:
            return fake.date_of_birth(minimum_age=min_age, maximum_age=max_age)

        generate.__name__ = "faker_date_of_birth"
        return generate

    def full_name(self, locale: str | None = None) -> Generator:
        """Generator of "First Last" names, never including prefixes or suffixes."""
        fake = self.faker(locale)

        def generate() -> str:
            return f"{fake.first_name()} {fake.last_name()}"

        generate.__name__ = "faker_full_name"
        return generate
