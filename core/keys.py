# -*- coding: utf-8 -*-
"""Single source of truth for wire-protocol and configuration keys.

These are the names used by the query endpoint and by the server-supplied
screen configuration. Keep them stable; the backend owns them.
"""

from __future__ import annotations


class DocKeys:
    ROOT = "dsXml"
    UI = "J_Ui"
    SQL = "Sql"
    FILTER = "X_Filter"
    FILTER_MULTIPLE = "X_Filter_Multiple"
    GFILTER = "X_GFilter"
    DATA_JSON = "X_DataJson"
    DATA = "X_Data"
    API = "J_Api"


class ResultSets:
    PRIMARY = "rs0"
    SECONDARY = "rs1"


class FieldKeys:
    TYPE = "type"
    LABEL = "label"
    KEY = "wKey"
    MANDATORY = "isMandatory"
    ENABLED = "FieldEnabledTag"
    VISIBLE_IN_TABLE = "isVisibleinTable"
    DEPENDS_ON = "dependsOn"
    QUERY = "wQuery"
    OPTION_KEYS = "wDropDownKey"
    DEFAULT = "wValue"
    VALIDATION = "ValidationAPI"
    OPTIONS = "options"
    MULTIPLE = "isMultiple"
    GROUP = "CombinedName"


class ValidationTags:
    FLAG = "Flag"
    MESSAGE = "Message"
    SUCCESS = "S"
    HARD_TOGGLE = "D"


# Placeholder the server uses for "current user" inside J_Api blocks.
USER_PLACEHOLDER = "<<USERID>>"
