"""Materials catalog lookups."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ecopickup.exceptions import NotFoundException
from ecopickup.models.material import Material


class MaterialService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_material(self, material_id: str) -> Material:
        """Get a material by ID. Raises NotFoundException if not found."""
        result = await self.db.execute(select(Material).where(Material.id == material_id))
        material = result.scalar_one_or_none()
        if material is None:
            raise NotFoundException(f"Material {material_id} not found")
        return material

    async def get_materials(self, material_ids: set[str]) -> dict[str, Material]:
        """Resolve several materials at once. Raises NotFoundException naming the first unknown ID."""
        result = await self.db.execute(select(Material).where(Material.id.in_(material_ids)))
        found = {m.id: m for m in result.scalars().all()}
        missing = sorted(material_ids - found.keys())
        if missing:
            raise NotFoundException(
                f"Material {missing[0]} not found",
                details=[{"field": "material_id", "message": m} for m in missing],
            )
        return found
