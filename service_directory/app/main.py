"""
Directory service: users and groups behind the access-control facade.
"""

import uuid
from typing import List, Optional

from fastapi import Body, Depends
from fastapi.responses import PlainTextResponse

from shared.base_service import BaseService

from .authn import principal_dependency
from .authz.engine import AccessControl
from .authz.principal import Principal
from .domain.models import (
    CreateGroupRequest, CreateUserRequest, GroupCoreResponse, GroupId, GroupResponse,
    UpdateGroupRequest, UpdateUserRequest, UserId, UserResponse
)
from .persistence.postgres import PostgreSQLRepository
from .service import GroupService, UserService


class DirectoryService(BaseService):
    """Directory service implementation."""

    def __init__(self, repository: Optional[PostgreSQLRepository] = None):
        super().__init__("directory", 8080)

        self.repository = repository or PostgreSQLRepository(
            self.config.postgres_dsn,
            min_size=self.config.postgres_min_pool,
            max_size=self.config.postgres_max_pool,
            command_timeout=self.config.postgres_command_timeout
        )

        # Unparsable policies must stop the service from starting
        self.access = AccessControl.load(
            self.repository,
            policy_dir=self.config.policy_dir,
            metrics=self.metrics
        )
        self.users = UserService(self.access, self.repository)
        self.groups = GroupService(self.access, self.repository)

        self._setup_directory_routes()

    def _setup_directory_routes(self):
        """Set up directory-specific routes."""
        get_principal = principal_dependency(self.repository)

        @self.app.get("/ping", response_class=PlainTextResponse)
        async def ping():
            return "pong"

        # Users

        @self.app.get("/api/users", response_model=List[UserResponse])
        async def list_users(principal: Principal = Depends(get_principal)):
            users = await self.users.list_users(principal)
            return [UserResponse.from_domain(u) for u in users]

        @self.app.post("/api/users", response_model=UserResponse)
        async def create_user(request: CreateUserRequest, principal: Principal = Depends(get_principal)):
            user = await self.users.create_user(principal, request.to_params())
            return UserResponse.from_domain(user)

        @self.app.get("/api/users/{user_id}", response_model=UserResponse)
        async def get_user(user_id: uuid.UUID, principal: Principal = Depends(get_principal)):
            user = await self.users.get_user(principal, UserId(user_id))
            return UserResponse.from_domain(user)

        @self.app.put("/api/users/{user_id}", response_model=UserResponse)
        async def update_user(
            user_id: uuid.UUID,
            request: UpdateUserRequest,
            principal: Principal = Depends(get_principal)
        ):
            user = await self.users.update_user(principal, UserId(user_id), request.to_params())
            return UserResponse.from_domain(user)

        # Groups

        @self.app.get("/api/groups", response_model=List[GroupCoreResponse])
        async def list_groups(principal: Principal = Depends(get_principal)):
            groups = await self.groups.list_groups(principal)
            return [GroupCoreResponse.from_domain(g) for g in groups]

        @self.app.post("/api/groups", response_model=GroupResponse)
        async def create_group(request: CreateGroupRequest, principal: Principal = Depends(get_principal)):
            group = await self.groups.create_group(principal, request.to_params())
            return GroupResponse.from_domain(group)

        @self.app.get("/api/groups/{group_id}", response_model=GroupResponse)
        async def get_group(group_id: uuid.UUID, principal: Principal = Depends(get_principal)):
            group = await self.groups.get_group(principal, GroupId(group_id))
            return GroupResponse.from_domain(group)

        @self.app.put("/api/groups/{group_id}", response_model=GroupResponse)
        async def update_group(
            group_id: uuid.UUID,
            request: UpdateGroupRequest,
            principal: Principal = Depends(get_principal)
        ):
            group = await self.groups.update_group(principal, GroupId(group_id), request.to_params())
            return GroupResponse.from_domain(group)

        @self.app.put("/api/groups/{group_id}/members", response_model=GroupResponse)
        async def update_group_members(
            group_id: uuid.UUID,
            members: List[uuid.UUID] = Body(...),
            principal: Principal = Depends(get_principal)
        ):
            group = await self.groups.update_group_members(
                principal, GroupId(group_id), [UserId(m) for m in members]
            )
            return GroupResponse.from_domain(group)

    async def _check_dependencies(self):
        """Check directory service dependencies."""
        return {"postgres": "ok" if await self.repository.health_check() else "error"}

    async def start(self):
        """Start directory service components."""
        await self.repository.start()
        self.logger.info("Directory service started")

    async def stop(self):
        """Stop directory service components."""
        await self.repository.stop()
        self.logger.info("Directory service stopped")


def create_app():
    """Create directory service application."""
    service = DirectoryService()
    return service.app


if __name__ == "__main__":
    service = DirectoryService()
    service.run()
