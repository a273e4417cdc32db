"""Read access to payment packages."""

from sqlalchemy.orm import Session

from ..core.exceptions import NotFoundException
from ..models.package import Package
from .base_repository import BaseRepository


class PackageRepository(BaseRepository[Package]):
    def __init__(self, db: Session):
        super().__init__(db, Package)

    def get_package(self, package_id: str) -> Package:
        package = self.get_by_id(package_id)
        if package is None:
            raise NotFoundException(
                "Package not found",
                code="PACKAGE_NOT_FOUND",
                details={"package_id": package_id},
            )
        return package
