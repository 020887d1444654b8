from __future__ import annotations

from dataclasses import dataclass
import typing as t


@dataclass
class Settings:
    coverage_enabled: bool = False
    skipping_enabled: bool = False
    require_git: bool = False
    itr_enabled: bool = False

    @classmethod
    def from_attributes(cls, attributes: t.Dict[str, t.Any]) -> Settings:
        itr_enabled = bool(attributes.get("itr_enabled"))
        coverage_enabled = bool(attributes.get("code_coverage")) and itr_enabled
        skipping_enabled = bool(attributes.get("tests_skipping")) and itr_enabled
        require_git = bool(attributes.get("require_git"))

        return cls(
            coverage_enabled=coverage_enabled,
            skipping_enabled=skipping_enabled,
            require_git=require_git,
            itr_enabled=itr_enabled,
        )
