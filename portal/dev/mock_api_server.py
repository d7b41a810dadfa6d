"""
本地 Mock Portal API server（内存数据，覆盖 store 层用到的接口）。

用途：
- 在没有真实后端的情况下，本地跑通：读列表 -> 上传 -> 审核 -> 通知
- 测试里通过 `httpx.ASGITransport(app=build_mock_app())` 直接挂载

启动：
  python -m portal.dev.mock_api_server
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import uvicorn
from fastapi import APIRouter
from fastapi import FastAPI
from fastapi import File
from fastapi import Request
from fastapi import UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

CURRENT_USER_ID = "u1"
VALID_STATUSES = ("pending", "under-review", "approved", "rejected", "revision-required")
PREVIEWABLE_MIME_TYPES = (
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
    "text/plain",
    "text/csv",
)


class StatusUpdateRequest(BaseModel):
    status: str
    reviewComment: str = ""


class BulkUpdateRequest(BaseModel):
    projectIds: list[str] = Field(default_factory=list)
    action: str = ""
    status: str | None = None
    reviewComment: str = ""


class PreferencesUpdateRequest(BaseModel):
    preferences: dict[str, Any]


class ProjectCreateRequest(BaseModel):
    title: str = ""
    description: str = ""
    supervisorId: str = ""
    sustainability: str = ""
    students: list[str] = Field(default_factory=list)
    coSupervisorId: str | None = None


class MockApiError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class MockState:
    """所有内存数据（每个 app 实例一份，测试之间互不影响）。"""

    projects: dict[str, dict[str, Any]] = field(default_factory=dict)
    files: dict[str, dict[str, Any]] = field(default_factory=dict)
    file_contents: dict[str, bytes] = field(default_factory=dict)
    downloads: list[dict[str, Any]] = field(default_factory=list)
    users: dict[str, dict[str, Any]] = field(default_factory=dict)
    notifications: dict[str, dict[str, Any]] = field(default_factory=dict)
    preferences: dict[str, Any] = field(default_factory=dict)
    request_counts: dict[str, int] = field(default_factory=dict)
    next_id: int = 1

    def new_id(self, prefix: str) -> str:
        value = f"{prefix}{self.next_id}"
        self.next_id += 1
        return value

    def count(self, name: str) -> None:
        self.request_counts[name] = self.request_counts.get(name, 0) + 1

    def project(self, project_id: str) -> dict[str, Any]:
        project = self.projects.get(project_id)
        if project is None:
            raise MockApiError(404, "Project not found")
        return project

    def file(self, file_id: str) -> dict[str, Any]:
        data = self.files.get(file_id)
        if data is None:
            raise MockApiError(404, "File not found")
        return data


def _default_preferences() -> dict[str, Any]:
    return {
        "email": {
            "projectStatusChange": True,
            "newProjectAssignment": True,
            "systemAnnouncements": True,
            "weeklyDigest": False,
        },
        "inApp": {
            "projectStatusChange": True,
            "newProjectAssignment": True,
            "systemAnnouncements": True,
            "comments": True,
        },
        "push": {"enabled": False, "projectStatusChange": False, "urgentOnly": True},
    }


def build_default_state() -> MockState:
    state = MockState(preferences=_default_preferences())
    base = 1_700_000_000.0
    students = [("u1", "Alice Chen", "alice@example.com"), ("u2", "Bob Li", "bob@example.com")]
    for user_id, name, email in students:
        state.users[user_id] = {
            "id": user_id,
            "name": name,
            "email": email,
            "role": "user",
            "status": "active",
            "createdAt": _iso(base),
        }
    state.users["t1"] = {
        "id": "t1",
        "name": "Dr. Wang",
        "email": "wang@example.com",
        "role": "teacher",
        "status": "active",
        "createdAt": _iso(base),
    }

    seeds = [
        ("p1", "Smart Campus", "IoT sensors for classrooms", "pending", "u1"),
        ("p2", "Library Search", "Full text search for theses", "approved", "u2"),
        ("p3", "Robot Arm", "Pick and place demo", "under-review", "u1"),
    ]
    for offset, (project_id, title, description, status, student_id) in enumerate(seeds):
        student = state.users[student_id]
        state.projects[project_id] = {
            "id": project_id,
            "title": title,
            "description": description,
            "status": status,
            "studentName": student["name"],
            "studentEmail": student["email"],
            "createdBy": student_id,
            "reviewComment": None,
            "createdAt": _iso(base + offset * 86400),
            "updatedAt": _iso(base + offset * 86400),
        }

    content = b"hello from the mock server\n"
    state.files["f1"] = {
        "id": "f1",
        "originalName": "notes.txt",
        "fileName": "f1.txt",
        "fileSize": len(content),
        "mimeType": "text/plain",
        "downloadUrl": "http://mock.local/files/f1.txt",
        "uploadedBy": CURRENT_USER_ID,
        "uploadedAt": _iso(base),
        "projectId": "p1",
        "downloadCount": 0,
    }
    state.file_contents["f1"] = content

    for index, (category, title) in enumerate(
        [("project", "Project submitted"), ("system", "Maintenance window"), ("project", "Project approved")],
        start=1,
    ):
        notification_id = f"n{index}"
        state.notifications[notification_id] = {
            "id": notification_id,
            "title": title,
            "message": f"{title} message",
            "type": "info",
            "category": category,
            "isRead": index == 2,
            "readAt": None,
            "createdAt": _iso(base + index * 60),
            "data": {},
        }
    state.next_id = 100
    return state


def _paginate(items: list[dict[str, Any]], page: int, limit: int) -> tuple[list[dict[str, Any]], int]:
    total_pages = (len(items) + limit - 1) // limit if items else 0
    start = (page - 1) * limit
    return items[start : start + limit], total_pages


def build_router(state: MockState) -> APIRouter:
    router = APIRouter(prefix="/api")

    # ---- project files ----

    @router.get("/projects/admin/file-statistics")
    async def file_statistics() -> dict[str, object]:
        state.count("file-statistics")
        total_bytes = sum(int(f["fileSize"]) for f in state.files.values())
        by_type: dict[str, int] = {}
        for f in state.files.values():
            by_type[f["mimeType"]] = by_type.get(f["mimeType"], 0) + 1
        recent = sorted(state.downloads, key=lambda d: d["downloadedAt"], reverse=True)[:10]
        return {
            "statistics": {
                "totalFiles": len(state.files),
                "totalStorageBytes": total_bytes,
                "totalStorageMB": round(total_bytes / (1024 * 1024), 2),
                "filesByType": by_type,
                "totalDownloads": len(state.downloads),
                "recentDownloads": recent,
            }
        }

    @router.get("/projects/admin")
    async def list_projects(request: Request) -> dict[str, object]:
        state.count("projects")
        params = request.query_params
        page = int(params.get("page", "1"))
        limit = int(params.get("limit", "10"))
        items = sorted(state.projects.values(), key=lambda p: p["createdAt"], reverse=True)
        status = params.get("status")
        if status:
            items = [p for p in items if p["status"] == status]
        search = params.get("search", "").lower()
        if search:
            items = [p for p in items if search in p["title"].lower() or search in p["description"].lower()]
        page_items, total_pages = _paginate(items, page, limit)
        return {
            "message": "All projects retrieved successfully",
            "projects": page_items,
            "pagination": {"currentPage": page, "limit": limit, "total": len(items), "totalPages": total_pages},
        }

    @router.get("/projects/{project_id}/files")
    async def get_project_files(project_id: str) -> dict[str, object]:
        state.count("project-files")
        state.project(project_id)
        files = [f for f in state.files.values() if f["projectId"] == project_id]
        files.sort(key=lambda f: f["uploadedAt"], reverse=True)
        return {"files": files}

    @router.post("/projects/{project_id}/files")
    async def upload_project_files(project_id: str, files: list[UploadFile] = File(...)) -> dict[str, object]:
        state.count("upload")
        state.project(project_id)
        if not files:
            raise MockApiError(400, "No files uploaded")
        uploaded: list[dict[str, Any]] = []
        for upload in files:
            content = await upload.read()
            file_id = state.new_id("f")
            metadata = {
                "id": file_id,
                "originalName": upload.filename or file_id,
                "fileName": f"{file_id}_{upload.filename}",
                "fileSize": len(content),
                "mimeType": upload.content_type or "application/octet-stream",
                "downloadUrl": f"http://mock.local/files/{file_id}",
                "uploadedBy": CURRENT_USER_ID,
                "uploadedAt": _iso(time.time()),
                "projectId": project_id,
                "downloadCount": 0,
            }
            state.files[file_id] = metadata
            state.file_contents[file_id] = content
            uploaded.append(metadata)
        return {"message": "Files uploaded successfully", "files": uploaded}

    @router.delete("/projects/{project_id}/files/{file_id}")
    async def delete_project_file(project_id: str, file_id: str) -> dict[str, object]:
        state.project(project_id)
        state.file(file_id)
        del state.files[file_id]
        state.file_contents.pop(file_id, None)
        return {"message": "File deleted successfully"}

    @router.get("/projects/{project_id}/files/{file_id}/download")
    async def download_project_file(project_id: str, file_id: str) -> dict[str, object]:
        data = state.file(file_id)
        state.project(project_id)
        data["downloadCount"] = int(data.get("downloadCount", 0)) + 1
        state.downloads.append(
            {
                "id": state.new_id("d"),
                "fileId": file_id,
                "fileName": data["originalName"],
                "projectId": project_id,
                "downloadedBy": CURRENT_USER_ID,
                "downloadedAt": _iso(time.time()),
            }
        )
        return {
            "downloadUrl": data["downloadUrl"],
            "fileName": data["originalName"],
            "fileSize": data["fileSize"],
            "mimeType": data["mimeType"],
        }

    @router.get("/projects/{project_id}/files/{file_id}/preview")
    async def preview_project_file(project_id: str, file_id: str) -> dict[str, object]:
        data = state.file(file_id)
        state.project(project_id)
        mime_type = data["mimeType"]
        if mime_type not in PREVIEWABLE_MIME_TYPES:
            raise MockApiError(400, "File type does not support preview")
        if mime_type.startswith("text/"):
            return {
                "previewType": "text",
                "content": state.file_contents.get(file_id, b"").decode("utf-8", errors="replace"),
                "fileName": data["originalName"],
                "mimeType": mime_type,
            }
        return {
            "previewType": "image" if mime_type.startswith("image/") else "document",
            "previewUrl": data["downloadUrl"],
            "fileName": data["originalName"],
            "mimeType": mime_type,
            "fileSize": data["fileSize"],
        }

    # ---- projects ----

    @router.put("/projects/{project_id}/status")
    async def update_project_status(project_id: str, req: StatusUpdateRequest) -> dict[str, object]:
        if req.status not in VALID_STATUSES:
            raise MockApiError(400, "Invalid status value")
        project = state.project(project_id)
        project["status"] = req.status
        project["reviewComment"] = req.reviewComment
        project["updatedAt"] = _iso(time.time())
        return {"message": "Project status updated successfully", "project": project}

    @router.delete("/projects/{project_id}")
    async def delete_project(project_id: str) -> dict[str, object]:
        state.project(project_id)
        del state.projects[project_id]
        for file_id in [fid for fid, f in state.files.items() if f["projectId"] == project_id]:
            del state.files[file_id]
            state.file_contents.pop(file_id, None)
        return {"message": "Project deleted successfully"}

    @router.put("/admin/projects/bulk")
    async def bulk_update_projects(req: BulkUpdateRequest) -> dict[str, object]:
        if not req.projectIds:
            raise MockApiError(400, "Project IDs array is required")
        if req.action not in ("updateStatus", "delete"):
            raise MockApiError(400, "Valid action is required (updateStatus, delete)")
        successful: list[dict[str, object]] = []
        failed: list[dict[str, object]] = []
        for project_id in req.projectIds:
            project = state.projects.get(project_id)
            if project is None:
                failed.append({"projectId": project_id, "error": "Project not found"})
                continue
            if req.action == "updateStatus":
                if not req.status or req.status not in VALID_STATUSES:
                    failed.append({"projectId": project_id, "error": "Status is required for updateStatus action"})
                    continue
                project["status"] = req.status
                project["reviewComment"] = req.reviewComment
                project["updatedAt"] = _iso(time.time())
                successful.append({"projectId": project_id, "action": "status_updated", "newStatus": req.status})
            else:
                del state.projects[project_id]
                successful.append({"projectId": project_id, "action": "deleted"})
        return {
            "message": "Bulk operation completed",
            "results": {"successful": successful, "failed": failed},
            "summary": {"total": len(req.projectIds), "successful": len(successful), "failed": len(failed)},
        }

    # ---- user projects (当前用户固定为 CURRENT_USER_ID) ----

    def own_projects() -> list[dict[str, Any]]:
        items = [p for p in state.projects.values() if p.get("createdBy") == CURRENT_USER_ID]
        return sorted(items, key=lambda p: p["createdAt"], reverse=True)

    @router.get("/user/projects")
    async def list_my_projects() -> dict[str, object]:
        state.count("my-projects")
        return {"projects": own_projects()}

    @router.get("/user/projects/search")
    async def search_my_projects(request: Request) -> dict[str, object]:
        state.count("my-project-search")
        params = request.query_params
        page = int(params.get("page", "1"))
        limit = int(params.get("limit", "10"))
        items = own_projects()
        q = params.get("q", "").lower()
        if q:
            items = [p for p in items if q in p["title"].lower() or q in p["description"].lower()]
        status = params.get("status")
        if status:
            items = [p for p in items if p["status"] == status]
        page_items, total_pages = _paginate(items, page, limit)
        return {
            "success": True,
            "data": {
                "projects": page_items,
                "pagination": {"currentPage": page, "limit": limit, "total": len(items), "totalPages": total_pages},
            },
        }

    @router.post("/user/projects", status_code=201)
    async def create_my_project(req: ProjectCreateRequest) -> dict[str, object]:
        if not (req.title and req.description and req.supervisorId and req.sustainability):
            raise MockApiError(400, "Title, description, supervisor, and sustainability are required")
        if len(req.students) > 4:
            raise MockApiError(400, "Maximum 4 students allowed per project")
        owner = state.users[CURRENT_USER_ID]
        now = _iso(time.time())
        project = {
            "id": state.new_id("p"),
            "title": req.title,
            "description": req.description,
            "status": "pending",
            "studentName": owner["name"],
            "studentEmail": owner["email"],
            "createdBy": CURRENT_USER_ID,
            "supervisorId": req.supervisorId,
            "sustainability": req.sustainability,
            "reviewComment": None,
            "createdAt": now,
            "updatedAt": now,
        }
        state.projects[project["id"]] = project
        return {"message": "Project created successfully", "project": project}

    @router.delete("/user/projects/{project_id}")
    async def delete_my_project(project_id: str) -> dict[str, object]:
        project = state.project(project_id)
        if project.get("createdBy") != CURRENT_USER_ID:
            raise MockApiError(403, "Not authorized to delete this project")
        del state.projects[project_id]
        return {"message": "Project deleted successfully"}

    # ---- admin dashboard / users ----

    @router.get("/admin/dashboard/stats")
    async def dashboard_stats() -> dict[str, object]:
        state.count("dashboard-stats")
        users = list(state.users.values())
        projects = list(state.projects.values())
        teachers = [u for u in users if u["role"] == "teacher"]
        stats = {
            "users": {
                "total": len(users),
                "active": sum(1 for u in users if u["status"] == "active"),
                "inactive": sum(1 for u in users if u["status"] == "inactive"),
                "students": sum(1 for u in users if u["role"] == "user"),
                "teachers": len(teachers),
                "recent": 0,
            },
            "projects": {
                "total": len(projects),
                "pending": sum(1 for p in projects if p["status"] == "pending"),
                "approved": sum(1 for p in projects if p["status"] == "approved"),
                "rejected": sum(1 for p in projects if p["status"] == "rejected"),
                "underReview": sum(1 for p in projects if p["status"] == "under-review"),
                "recent": 0,
            },
            "teachers": {"total": len(teachers)},
            "overview": {
                "totalUsers": len(users),
                "totalProjects": len(projects),
                "totalTeachers": len(teachers),
                "recentActivity": 0,
            },
        }
        return {"success": True, "message": "Dashboard statistics retrieved successfully", "stats": stats}

    @router.get("/admin/users")
    async def list_users(request: Request) -> dict[str, object]:
        state.count("users")
        params = request.query_params
        page = int(params.get("page", "1"))
        limit = int(params.get("limit", "10"))
        items = sorted(state.users.values(), key=lambda u: u["id"])
        role = params.get("role")
        if role:
            items = [u for u in items if u["role"] == role]
        page_items, total_pages = _paginate(items, page, limit)
        return {
            "users": page_items,
            "pagination": {"currentPage": page, "limit": limit, "total": len(items), "totalPages": total_pages},
        }

    # ---- notifications ----

    @router.get("/notifications")
    async def list_notifications(request: Request) -> dict[str, object]:
        state.count("notifications")
        params = request.query_params
        page = int(params.get("page", "1"))
        limit = int(params.get("limit", "20"))
        items = sorted(state.notifications.values(), key=lambda n: n["createdAt"], reverse=True)
        if params.get("unreadOnly") == "true":
            items = [n for n in items if not n["isRead"]]
        category = params.get("category")
        if category:
            items = [n for n in items if n["category"] == category]
        unread = sum(1 for n in items if not n["isRead"])
        page_items, total_pages = _paginate(items, page, limit)
        return {
            "success": True,
            "message": "Notifications retrieved successfully",
            "data": {
                "notifications": page_items,
                "pagination": {
                    "currentPage": page,
                    "totalPages": max(1, total_pages),
                    "totalNotifications": len(items),
                    "hasNextPage": page * limit < len(items),
                    "hasPrevPage": page > 1,
                    "limit": limit,
                },
                "unreadCount": unread,
            },
        }

    @router.put("/notifications/mark-all-read")
    async def mark_all_read() -> dict[str, object]:
        count = 0
        for n in state.notifications.values():
            if not n["isRead"]:
                n["isRead"] = True
                n["readAt"] = _iso(time.time())
                count += 1
        return {"success": True, "message": f"{count} notifications marked as read", "data": {"count": count}}

    @router.get("/notifications/preferences")
    async def get_preferences() -> dict[str, object]:
        state.count("preferences")
        return {
            "success": True,
            "message": "Notification preferences retrieved successfully",
            "data": {"preferences": state.preferences},
        }

    @router.put("/notifications/preferences")
    async def update_preferences(req: PreferencesUpdateRequest) -> dict[str, object]:
        state.preferences = req.preferences
        return {
            "success": True,
            "message": "Notification preferences updated successfully",
            "data": {"preferences": state.preferences},
        }

    @router.put("/notifications/{notification_id}/read")
    async def mark_read(notification_id: str) -> dict[str, object]:
        notification = state.notifications.get(notification_id)
        if notification is None:
            raise MockApiError(404, "Notification not found")
        notification["isRead"] = True
        notification["readAt"] = _iso(time.time())
        return {"success": True, "message": "Notification marked as read"}

    @router.delete("/notifications/{notification_id}")
    async def delete_notification(notification_id: str) -> dict[str, object]:
        if state.notifications.pop(notification_id, None) is None:
            raise MockApiError(404, "Notification not found")
        return {"success": True, "message": "Notification deleted successfully"}

    return router


def build_mock_app(state: MockState | None = None) -> FastAPI:
    """创建 mock app；传入 state 便于测试直接检查 / 篡改内存数据。"""
    app_state = state or build_default_state()
    app = FastAPI(title="Mock Portal API", version="0.1.0")
    app.state.mock = app_state

    @app.exception_handler(MockApiError)
    async def handle_mock_error(_request: Request, exc: MockApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})

    @app.get("/__debug__/state")
    async def debug_state() -> dict[str, object]:
        return {
            "projects": len(app_state.projects),
            "files": len(app_state.files),
            "notifications": len(app_state.notifications),
            "requestCounts": app_state.request_counts,
        }

    app.include_router(build_router(app_state))
    return app


app = build_mock_app()


def main() -> None:
    uvicorn.run(app, host="127.0.0.1", port=9003)


if __name__ == "__main__":
    main()
