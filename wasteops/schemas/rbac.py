"""Request and response models for RBAC administration."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

# group and name halves of a "group:name" permission string
_SEGMENT = r"^[a-z][a-z0-9_]*$"


class RoleIn(BaseModel):
    name: str = Field(min_length=1, max_length=128)


class RoleOut(BaseModel):
    id: int
    name: str
    permissions: list[str]

    @classmethod
    def from_role(cls, role) -> "RoleOut":
        return cls(
            id=role.id,
            name=role.name,
            permissions=sorted(rp.permission.key for rp in role.role_permissions),
        )


class PermissionIn(BaseModel):
    group: str = Field(min_length=1, max_length=64, pattern=_SEGMENT)
    name: str = Field(min_length=1, max_length=64, pattern=_SEGMENT)


class PermissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    group: str
    name: str
    key: str


class RolePermissionIn(BaseModel):
    role_id: int
    permission_id: int


class RolePermissionOut(BaseModel):
    id: int
    role_id: int
    role: str
    permission_id: int
    permission: str

    @classmethod
    def from_grant(cls, grant) -> "RolePermissionOut":
        return cls(
            id=grant.id,
            role_id=grant.role.id,
            role=grant.role.name,
            permission_id=grant.permission.id,
            permission=grant.permission.key,
        )


class UserRoleRequest(BaseModel):
    user_id: int
    role: str = Field(min_length=1)


class UserRoleOut(BaseModel):
    user_id: int
    role: str
    assigned: bool


class UserRoleUpdate(BaseModel):
    role: str = Field(min_length=1)


class UserRoleRecordOut(BaseModel):
    id: int
    user_id: int
    role_id: int
    role: str

    @classmethod
    def from_assignment(cls, assignment) -> "UserRoleRecordOut":
        return cls(
            id=assignment.id,
            user_id=assignment.user_id,
            role_id=assignment.role.id,
            role=assignment.role.name,
        )


class RemovedOut(BaseModel):
    removed: int
