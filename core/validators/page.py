# -*- coding: utf-8 -*-
"""Page configuration validation (pure).

Checks the raw server payload before a report is built from it so that a
broken configuration is reported as a list of issues instead of failing
half-way through a fetch.
"""

from __future__ import annotations

from typing import Any, List, Mapping

from core.types import Issue, Severity


def _err(code: str, message: str, context: str) -> Issue:
    return Issue(code=code, message=message, severity=Severity.ERROR, context=context)


def _warn(code: str, message: str, context: str) -> Issue:
    return Issue(code=code, message=message, severity=Severity.WARNING, context=context)


def validate_page(page_data: Any) -> List[Issue]:
    issues: List[Issue] = []

    if page_data is None:
        return [_err("PAGE_MISSING", "Page data is missing.", "pageData")]
    if isinstance(page_data, list):
        if not page_data:
            return [_err("PAGE_EMPTY", "Page data array is empty. No configuration found.", "pageData")]
        page = page_data[0]
    else:
        page = page_data
    if not isinstance(page, Mapping):
        return [_err("PAGE_INVALID", "Invalid page configuration structure.", "pageData[0]")]

    levels = page.get("levels")
    if levels is None:
        issues.append(_err("LEVELS_MISSING", "Page levels configuration is missing.", "levels"))
    elif not isinstance(levels, list):
        issues.append(_err("LEVELS_TYPE", "Page levels should be an array.", "levels"))
    elif not levels:
        issues.append(_err("LEVELS_EMPTY", "At least one level configuration is required.", "levels"))
    else:
        for i, level in enumerate(levels):
            if not isinstance(level, Mapping):
                issues.append(_err("LEVEL_INVALID", f"Level {i} configuration is invalid.", f"levels[{i}]"))
            elif not level.get("J_Ui"):
                issues.append(_warn("LEVEL_NO_UI", f"Level {i} is missing J_Ui configuration.", f"levels[{i}].J_Ui"))

    filters = page.get("filters")
    if filters is not None:
        if not isinstance(filters, list):
            issues.append(_err("FILTERS_TYPE", "Filters configuration should be an array.", "filters"))
        else:
            for g, group in enumerate(filters):
                if not isinstance(group, list):
                    issues.append(_err("FILTER_GROUP_TYPE", f"Filter group {g} should be an array.", f"filters[{g}]"))
                    continue
                for j, flt in enumerate(group):
                    ctx = f"filters[{g}][{j}]"
                    if not isinstance(flt, Mapping):
                        issues.append(_err("FILTER_INVALID", f"Filter at position [{g}][{j}] is invalid.", ctx))
                    elif not flt.get("type"):
                        issues.append(_warn("FILTER_NO_TYPE", f"Filter at position [{g}][{j}] is missing type.", ctx + ".type"))

    sql = page.get("Sql")
    if sql is not None and not isinstance(sql, str):
        issues.append(_warn("SQL_TYPE", "SQL configuration should be a string.", "Sql"))

    auto = page.get("autoFetch")
    if auto is not None and not isinstance(auto, (str, bool)):
        issues.append(_warn("AUTOFETCH_TYPE", "autoFetch should be a string or boolean.", "autoFetch"))

    return issues


def has_errors(issues: List[Issue]) -> bool:
    return any(it.severity is Severity.ERROR for it in issues)
