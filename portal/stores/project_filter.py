"""
管理后台批量操作页的客户端筛选 / 排序 / 分页（纯函数，确定性）。

筛选规则：
- search：标题 / 描述 / 学生姓名 / 学生邮箱 任一包含（不区分大小写）
- status：`all` 表示不过滤；缺失状态的项目视为 pending
- student：学生姓名或邮箱包含（不区分大小写）
- date_from / date_to：按 createdAt 闭区间过滤；没有 createdAt 的项目被排除
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from portal.api.schemas import Project

SortField = Literal["createdAt", "updatedAt", "title", "status", "studentName"]


class ProjectFilter(BaseModel):
    search: str = ""
    status: str = "all"
    student: str = ""
    date_from: datetime | None = None
    date_to: datetime | None = None
    sort_by: SortField = "createdAt"
    sort_order: Literal["asc", "desc"] = "desc"


class ProjectListView(BaseModel):
    """一页结果 + 计数（用于 “Showing x of y (filtered from z total)”）。"""

    items: list[Project] = Field(default_factory=list)
    page: int = 0
    rows_per_page: int = 10
    filtered_total: int = 0
    total: int = 0


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _contains(haystack: str | None, needle: str) -> bool:
    return bool(haystack) and needle in haystack.lower()  # type: ignore[union-attr]


def _sort_key(project: Project, field: str) -> Any:
    if field in ("createdAt", "updatedAt"):
        parsed = _parse_datetime(getattr(project, field))
        return parsed or datetime.fromtimestamp(0, tz=timezone.utc)
    value = getattr(project, field)
    if isinstance(value, str):
        return value.lower()
    return "" if value is None else value


def filter_projects(projects: Sequence[Project], flt: ProjectFilter) -> list[Project]:
    result = list(projects)

    if flt.search:
        needle = flt.search.lower()
        result = [
            p
            for p in result
            if _contains(p.title, needle)
            or _contains(p.description, needle)
            or _contains(p.studentName, needle)
            or _contains(p.studentEmail, needle)
        ]

    if flt.status != "all":
        result = [p for p in result if (p.status or "pending") == flt.status]

    if flt.student:
        needle = flt.student.lower()
        result = [p for p in result if _contains(p.studentName, needle) or _contains(p.studentEmail, needle)]

    if flt.date_from is not None or flt.date_to is not None:
        kept: list[Project] = []
        for p in result:
            created = _parse_datetime(p.createdAt)
            if created is None:
                continue
            if flt.date_from is not None and created < _aware(flt.date_from):
                continue
            if flt.date_to is not None and created > _aware(flt.date_to):
                continue
            kept.append(p)
        result = kept

    # sorted 是稳定排序：相同 key 保持原顺序
    return sorted(result, key=lambda p: _sort_key(p, flt.sort_by), reverse=flt.sort_order == "desc")


def paginate(items: Sequence[Project], page: int, rows_per_page: int) -> list[Project]:
    """page 从 0 开始。"""
    if page < 0:
        raise ValueError("page must be >= 0")
    if rows_per_page <= 0:
        raise ValueError("rows_per_page must be > 0")
    start = page * rows_per_page
    return list(items[start : start + rows_per_page])


def build_project_view(
    projects: Sequence[Project],
    flt: ProjectFilter,
    page: int = 0,
    rows_per_page: int = 10,
) -> ProjectListView:
    filtered = filter_projects(projects, flt)
    return ProjectListView(
        items=paginate(filtered, page=page, rows_per_page=rows_per_page),
        page=page,
        rows_per_page=rows_per_page,
        filtered_total=len(filtered),
        total=len(projects),
    )


def unique_students(projects: Sequence[Project]) -> list[str]:
    """学生筛选下拉框的候选项（去重、排序）。"""
    return sorted({p.studentName for p in projects if p.studentName})
