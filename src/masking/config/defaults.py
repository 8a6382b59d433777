"""
Built-in rule registry.

Mirrors the deployment the job was written for: church members (identity
matched against application users so staff/test accounts survive), the
prayer requests of group meetings, and a scratch table used in staging.
"""

from ..generators import FakerGenerators
from .rules import ColumnRule, RuleRegistry, TableConfig


def build_default_registry(generators: FakerGenerators) -> RuleRegistry:
    """Build the built-in registry on top of ``generators``."""
    return RuleRegistry(
        tables={
            "member": TableConfig(
                columns={
                    "name_in_korean": ColumnRule(generators.provider("name", locale="ko_KR")),
                    "name": ColumnRule(generators.full_name(), null_frequency=0.2),
                    "dob": ColumnRule(generators.birthdate(min_age=18, max_age=45), null_frequency=0.2),
                    "phone_number": ColumnRule(generators.provider("phone_number"), null_frequency=0.2),
                    "email": ColumnRule(generators.provider("email"), null_frequency=0.3),
                    "address": ColumnRule(generators.provider("address"), null_frequency=0.3),
                },
            ),
            "group_meeting_record": TableConfig(
                primary_key=("group_meeting_id", "member_id"),
                columns={
                    "prayer_request": ColumnRule(
                        generators.provider("sentence", locale="ko_KR"), null_frequency=0.4
                    ),
                },
            ),
            "test_table": TableConfig(
                primary_key="id",
                columns={
                    "text_column": ColumnRule(
                        generators.provider("sentence", locale="ko_KR"), null_frequency=0.1
                    ),
                    "phone_number": ColumnRule(generators.provider("phone_number")),
                    "name": ColumnRule(generators.provider("name", locale="ko_KR")),
                },
            ),
        },
        protected_tables=frozenset({"member"}),
        identity_table="user",
        identity_column="email",
        match_column="email",
    )
