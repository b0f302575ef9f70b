import uuid
from typing import Dict, Iterable, List, Optional

from sqlmodel import Session, SQLModel, select, col

from app.db.schema import Supplier, UserProfile


class MaterialInfo(SQLModel):
    key: str
    name: str
    category: str
    unit: str
    specifications: Optional[str] = None


def _m(key, name, category, unit, specifications=None) -> MaterialInfo:
    return MaterialInfo(key=key, name=name, category=category, unit=unit, specifications=specifications)


# Materials a builder can request quotes for. Mirrors the BOQ material list.
DEFAULT_MATERIALS: List[MaterialInfo] = [
    # BRICKS & BLOCKS
    _m("brick_common", "Common Cement Brick", "bricks", "each"),
    _m("brick_face_red", "Face Brick (Red)", "bricks", "per 1000", "Standard red face brick"),
    _m("block_6inch", "Hollow Block 6\"", "bricks", "each", "150mm hollow concrete block"),
    _m("block_8inch", "Hollow Block 8\"", "bricks", "each", "200mm hollow concrete block"),

    # CEMENT
    _m("cement_50kg", "Standard Cement 32.5N", "cement", "bag", "PPC/Lafarge 32.5N, 50kg"),
    _m("cement_rapid_50kg", "Rapid Cement 42.5R", "cement", "bag", "42.5R rapid setting, 50kg"),
    _m("cement_white_25kg", "White Cement", "cement", "bag", "For white plastering and tiles"),

    # SAND & AGGREGATES
    _m("sand_river", "River Sand (Concrete)", "sand", "cube", "Sharp river sand for concrete"),
    _m("sand_pit", "Pit Sand (Plastering)", "sand", "cube", "Fine pit sand for plastering"),
    _m("stone_19mm", "Crushed Stone 19mm", "aggregates", "cube", "19mm aggregate for concrete"),

    # STEEL
    _m("rebar_y10", "Rebar Y10 (6m)", "steel", "length", "10mm deformed bar"),
    _m("rebar_y12", "Rebar Y12 (6m)", "steel", "length", "12mm deformed bar"),
    _m("mesh_ref193", "Mesh Ref 193", "steel", "sheet", "2.4m x 6m welded mesh"),
    _m("binding_wire", "Binding Wire", "steel", "kg", "1.6mm annealed wire"),

    # ROOFING & TIMBER
    _m("ibr_sheet_04_3m", "IBR Sheet 0.4mm (3m)", "roofing", "sheet", "0.4mm galvanized IBR"),
    _m("roof_tiles_harvey", "Harvey Tiles", "roofing", "tile", "Concrete roof tiles"),
    _m("timber_50x76", "Timber 50x76mm (Rafters)", "timber", "6m length", "Treated pine"),

    # ELECTRICAL & PLUMBING
    _m("cable_2_5mm", "Cable 2.5mm T&E", "electrical", "100m roll"),
    _m("db_board_8way", "Distribution Board 8-Way", "electrical", "each"),
    _m("pipe_pvc_110mm", "PVC Pipe 110mm", "plumbing", "6m length", "110mm PVC soil pipe"),
    _m("geyser_150l", "Geyser 150L", "plumbing", "each"),

    # FINISHES & HARDWARE
    _m("paint_pva_20l", "PVA Paint (White)", "finishes", "20L", "Interior PVA emulsion"),
    _m("tile_adhesive_20kg", "Tile Adhesive", "finishes", "bag"),
    _m("nails_75mm", "Wire Nails 75mm", "hardware", "kg"),
]


class MaterialCatalog:
    """
    Read-only lookup of material display names, categories and units.
    """

    def __init__(self, materials: Optional[Iterable[MaterialInfo]] = None):
        self._materials: Dict[str, MaterialInfo] = {
            m.key: m for m in (materials if materials is not None else DEFAULT_MATERIALS)
        }

    def get(self, material_key: str) -> Optional[MaterialInfo]:
        return self._materials.get(material_key)

    def has(self, material_key: str) -> bool:
        return material_key in self._materials

    def categories_for(self, material_keys: Iterable[str]) -> List[str]:
        """Distinct catalog categories of the given materials, in first-seen order."""
        seen: List[str] = []
        for key in material_keys:
            material = self._materials.get(key)
            if material and material.category not in seen:
                seen.append(material.category)
        return seen


class SupplierDirectory:
    """
    Read-only access to supplier records and account contact preferences.
    """

    def __init__(self, session: Session):
        self.session = session

    def active_suppliers(self) -> List[Supplier]:
        statement = select(Supplier).where(Supplier.is_active == True)
        return list(self.session.exec(statement).all())

    def get_suppliers(self, supplier_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, Supplier]:
        ids = list(supplier_ids)
        if not ids:
            return {}
        rows = self.session.exec(
            select(Supplier).where(col(Supplier.id).in_(ids))
        ).all()
        return {s.id: s for s in rows}

    def get_profile(self, user_id: Optional[uuid.UUID]) -> Optional[UserProfile]:
        if user_id is None:
            return None
        return self.session.get(UserProfile, user_id)
