"""
SQLAlchemy Models for Energy Insights

Design Principles:
1. Normalize the ground truth (states, plants, per-plant-per-year facts)
2. Derive state totals in a materialized view, never store them by hand
3. Natural keys are unique: state code, (plant name, state), (plant, year)

The materialized view `state_generation_mv` is created by a SQL migration
(see migrations/), not by metadata.create_all. It is described here as a
Table on its own MetaData so queries can be built against it.
"""

from sqlalchemy import (
    Column, String, Integer, Numeric, ForeignKey, Index, UniqueConstraint,
    MetaData, Table,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


# =============================================================================
# CORE TABLES
# =============================================================================

class State(Base):
    """U.S. state, identified by its two-letter code"""
    __tablename__ = "states"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(2), unique=True, nullable=False)
    name = Column(String(100), nullable=False)

    # Relationships
    plants = relationship("Plant", back_populates="state")

    def __repr__(self):
        return f"<State {self.code}>"


class Plant(Base):
    """Power plant; unique by (name, state)"""
    __tablename__ = "plants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    state_id = Column(Integer, ForeignKey("states.id"), nullable=False)

    # Relationships
    state = relationship("State", back_populates="plants")
    generations = relationship("PlantGeneration", back_populates="plant")

    __table_args__ = (
        UniqueConstraint("name", "state_id", name="plants_name_state_id_key"),
        Index("idx_plants_state", "state_id"),
    )

    def __repr__(self):
        return f"<Plant {self.name} ({self.state_id})>"


class PlantGeneration(Base):
    """Annual net generation (MWh) of one plant; one row per plant per year"""
    __tablename__ = "plant_generations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    plant_id = Column(Integer, ForeignKey("plants.id"), nullable=False)
    year = Column(Integer, nullable=False)
    net_generation = Column(Numeric(18, 2), nullable=False)

    # Relationships
    plant = relationship("Plant", back_populates="generations")

    __table_args__ = (
        UniqueConstraint("plant_id", "year", name="plant_generations_plant_id_year_key"),
        Index("plant_generations_year_net_generation_idx", "year", "net_generation"),
        Index("plant_generations_plant_id_year_idx", "plant_id", "year"),
    )

    def __repr__(self):
        return f"<PlantGeneration plant={self.plant_id} year={self.year}>"


# =============================================================================
# AGGREGATE VIEW (created by migration 001)
# =============================================================================

view_metadata = MetaData()

state_generation_mv = Table(
    "state_generation_mv",
    view_metadata,
    Column("state_id", Integer, primary_key=True),
    Column("year", Integer, primary_key=True),
    Column("total_generation", Numeric(18, 2)),
)

STATE_GENERATION_VIEW = state_generation_mv.name
