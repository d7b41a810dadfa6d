"""
Portal REST API response schemas（Pydantic）。

说明：
- 字段名与服务端 JSON 保持一致（camelCase），便于直接 `model_validate`
- 只覆盖 store 层用到的子集；多余字段忽略
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

ProjectStatus = Literal["pending", "under-review", "approved", "rejected", "revision-required"]


class ProjectFile(BaseModel):
    """项目附件元数据（GET /projects/{id}/files 的 item）。"""

    id: str
    originalName: str
    fileName: str = ""
    fileSize: int = 0
    mimeType: str = "application/octet-stream"
    downloadUrl: str | None = None
    uploadedBy: str | None = None
    uploadedAt: str | None = None
    projectId: str | None = None
    downloadCount: int = 0


class ProjectFilesResponse(BaseModel):
    files: list[ProjectFile] = Field(default_factory=list)


class UploadFilesResponse(BaseModel):
    message: str | None = None
    files: list[ProjectFile] = Field(default_factory=list)


class FileDownload(BaseModel):
    downloadUrl: str
    fileName: str
    fileSize: int = 0
    mimeType: str = "application/octet-stream"


class FilePreview(BaseModel):
    """
    文件预览。

    - text：content 为文本内容
    - image/document：previewUrl 为可直接打开的地址
    """

    previewType: Literal["text", "image", "document"]
    fileName: str
    mimeType: str
    content: str | None = None
    previewUrl: str | None = None
    fileSize: int | None = None


class RecentDownload(BaseModel):
    id: str
    fileId: str | None = None
    fileName: str | None = None
    projectId: str | None = None
    downloadedBy: str | None = None
    downloadedAt: str | None = None


class FileStatistics(BaseModel):
    totalFiles: int = 0
    totalStorageBytes: int = 0
    totalStorageMB: float = 0.0
    filesByType: dict[str, int] = Field(default_factory=dict)
    totalDownloads: int = 0
    recentDownloads: list[RecentDownload] = Field(default_factory=list)


class UserStats(BaseModel):
    total: int = 0
    active: int = 0
    inactive: int = 0
    students: int = 0
    teachers: int = 0
    recent: int = 0


class ProjectStats(BaseModel):
    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    underReview: int = 0
    recent: int = 0


class TeacherStats(BaseModel):
    total: int = 0


class OverviewStats(BaseModel):
    totalUsers: int = 0
    totalProjects: int = 0
    totalTeachers: int = 0
    recentActivity: int = 0


class DashboardStats(BaseModel):
    """管理后台首页统计（GET /admin/dashboard/stats 的 `stats`）。"""

    users: UserStats = Field(default_factory=UserStats)
    projects: ProjectStats = Field(default_factory=ProjectStats)
    teachers: TeacherStats = Field(default_factory=TeacherStats)
    overview: OverviewStats = Field(default_factory=OverviewStats)


class Pagination(BaseModel):
    """归一化后的分页信息（服务端用 currentPage，这里统一成 page）。"""

    page: int = 1
    limit: int = 10
    total: int = 0
    totalPages: int = 0


class Project(BaseModel):
    id: str
    title: str = ""
    description: str = ""
    status: ProjectStatus = "pending"
    studentName: str | None = None
    studentEmail: str | None = None
    reviewComment: str | None = None
    createdBy: str | None = None
    supervisorId: str | None = None
    sustainability: str | None = None
    imageUrl: str | None = None
    createdAt: str | None = None
    updatedAt: str | None = None


class ProjectDraft(BaseModel):
    """新建项目的请求体（POST /user/projects）。最多 4 名学生。"""

    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    supervisorId: str = Field(min_length=1)
    sustainability: str = Field(min_length=1)
    students: list[str] = Field(default_factory=list, max_length=4)
    coSupervisorId: str | None = None


class ProjectListResponse(BaseModel):
    projects: list[Project] = Field(default_factory=list)


class CreateProjectResponse(BaseModel):
    message: str | None = None
    project: Project


class ProjectPage(BaseModel):
    items: list[Project] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)


class User(BaseModel):
    id: str
    name: str | None = None
    email: str | None = None
    role: str = "user"
    status: str = "active"
    createdAt: str | None = None


class UserPage(BaseModel):
    items: list[User] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)


class BulkResultItem(BaseModel):
    projectId: str
    action: str | None = None
    newStatus: str | None = None
    error: str | None = None


class BulkResults(BaseModel):
    successful: list[BulkResultItem] = Field(default_factory=list)
    failed: list[BulkResultItem] = Field(default_factory=list)


class BulkSummary(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0


class BulkUpdateResult(BaseModel):
    message: str | None = None
    results: BulkResults = Field(default_factory=BulkResults)
    summary: BulkSummary = Field(default_factory=BulkSummary)


class Notification(BaseModel):
    id: str
    title: str = ""
    message: str = ""
    type: Literal["info", "success", "warning", "error"] = "info"
    category: str = "general"
    isRead: bool = False
    readAt: str | None = None
    createdAt: str | None = None
    data: dict[str, object] = Field(default_factory=dict)


class NotificationPagination(BaseModel):
    currentPage: int = 1
    totalPages: int = 1
    totalNotifications: int = 0
    hasNextPage: bool = False
    hasPrevPage: bool = False
    limit: int = 20


class NotificationPage(BaseModel):
    notifications: list[Notification] = Field(default_factory=list)
    pagination: NotificationPagination = Field(default_factory=NotificationPagination)
    unreadCount: int = 0


class EmailPreferences(BaseModel):
    projectStatusChange: bool = True
    newProjectAssignment: bool = True
    systemAnnouncements: bool = True
    weeklyDigest: bool = False


class InAppPreferences(BaseModel):
    projectStatusChange: bool = True
    newProjectAssignment: bool = True
    systemAnnouncements: bool = True
    comments: bool = True


class PushPreferences(BaseModel):
    enabled: bool = False
    projectStatusChange: bool = False
    urgentOnly: bool = True


class NotificationPreferences(BaseModel):
    email: EmailPreferences = Field(default_factory=EmailPreferences)
    inApp: InAppPreferences = Field(default_factory=InAppPreferences)
    push: PushPreferences = Field(default_factory=PushPreferences)
