"""Risk classification of SQL content, used to route approval requests."""

import re
from typing import List

from scriptgov.core.permissions import UserRole
from scriptgov.models.approval import ScriptType

_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_SINGLE_QUOTED = re.compile(r"'(?:[^']|'')*'")
_DOUBLE_QUOTED = re.compile(r'"[^"]*"')
_WHITESPACE = re.compile(r"\s+")

SYSTEM_ADMIN_KEYWORDS = (
    "GRANT", "REVOKE", "CREATE USER", "DROP USER", "ALTER USER",
    "BACKUP", "RESTORE", "SHUTDOWN", "KILL",
)
STRUCTURE_CHANGE_KEYWORDS = (
    "CREATE TABLE", "DROP TABLE", "ALTER TABLE",
    "CREATE INDEX", "DROP INDEX",
    "CREATE DATABASE", "DROP DATABASE",
)
DATA_MODIFICATION_KEYWORDS = (
    "INSERT", "UPDATE", "DELETE", "TRUNCATE", "MERGE",
)

# Higher-risk scripts need higher-ranked approvers.
REQUIRED_APPROVERS = {
    ScriptType.read_only: (UserRole.manager, UserRole.admin),
    ScriptType.data_modification: (UserRole.manager, UserRole.admin),
    ScriptType.structure_change: (UserRole.admin,),
    ScriptType.system_admin: (UserRole.admin,),
}


def normalize_sql(sql_content: str) -> str:
    """Upper-case the SQL with comments and string literals blanked out."""
    sql = _BLOCK_COMMENT.sub(" ", sql_content or "")
    sql = _LINE_COMMENT.sub(" ", sql)
    sql = _SINGLE_QUOTED.sub("''", sql)
    sql = _DOUBLE_QUOTED.sub('""', sql)
    return _WHITESPACE.sub(" ", sql).upper().strip()


def _contains_keyword(sql: str, keyword: str) -> bool:
    pattern = r"\b" + r"\s+".join(re.escape(part) for part in keyword.split()) + r"\b"
    return re.search(pattern, sql) is not None


def analyze_script_type(sql_content: str) -> ScriptType:
    """Classify SQL by the most dangerous kind of statement it contains."""
    sql = normalize_sql(sql_content)
    if any(_contains_keyword(sql, kw) for kw in SYSTEM_ADMIN_KEYWORDS):
        return ScriptType.system_admin
    if any(_contains_keyword(sql, kw) for kw in STRUCTURE_CHANGE_KEYWORDS):
        return ScriptType.structure_change
    if any(_contains_keyword(sql, kw) for kw in DATA_MODIFICATION_KEYWORDS):
        return ScriptType.data_modification
    return ScriptType.read_only


def required_approvers_for(script_type: ScriptType) -> List[str]:
    """Role names allowed to decide on a request of this type."""
    return [role.value for role in REQUIRED_APPROVERS[ScriptType(script_type)]]


def script_types_reviewable_by(role: UserRole) -> List[ScriptType]:
    """Script types whose requests a holder of ``role`` may decide on."""
    role = UserRole(role)
    return [t for t, roles in REQUIRED_APPROVERS.items() if role in roles]
