"""
Table definitions for the diagnostics knowledge base.

This module defines:
1. SQLAlchemy Core tables for every knowledge-base collection
2. The static per-collection field lists used by keyword matching
3. The relations eager-loaded into search results
"""
import uuid
from types import MappingProxyType

import sqlalchemy as sa

metadata = sa.MetaData()

# Postgres keeps keyword snapshots as text[]; SQLite (tests) falls back to JSON
KEYWORD_LIST = sa.ARRAY(sa.Text()).with_variant(sa.JSON(), "sqlite")


def _uuid_str() -> str:
    return str(uuid.uuid4())


def _pk(name: str) -> sa.Column:
    return sa.Column(name, sa.String(36), primary_key=True, default=_uuid_str)


def _problem_fk() -> sa.Column:
    return sa.Column(
        "problem_id",
        sa.String(36),
        sa.ForeignKey("problems.problem_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
            nullable=False,
        ),
    ]


vehicle_models = sa.Table(
    "vehicle_models", metadata,
    _pk("model_id"),
    sa.Column("manufacturer", sa.Text, nullable=False),
    sa.Column("model_name", sa.Text, nullable=False),
    sa.Column("year_range", sa.Text),
    sa.Column("engine_type", sa.Text),
    sa.Column("transmission_type", sa.Text),
    sa.Column("market_region", sa.Text),
    *_timestamps(),
)

problems = sa.Table(
    "problems", metadata,
    _pk("problem_id"),
    sa.Column("problem_code", sa.Text, nullable=False),
    sa.Column("problem_name", sa.Text, nullable=False),
    sa.Column("description", sa.Text),
    # Engine, Transmission, Brake, Suspension, Electrical, Cooling, Fuel, ...
    sa.Column("system_category", sa.Text, nullable=False),
    # Low, Medium, High, Critical
    sa.Column("severity_level", sa.Text, nullable=False),
    *_timestamps(),
)

vehicle_problems = sa.Table(
    "vehicle_problems", metadata,
    sa.Column("id", sa.String(36), primary_key=True, default=_uuid_str),
    sa.Column("model_id", sa.String(36), sa.ForeignKey("vehicle_models.model_id", ondelete="CASCADE"), nullable=False),
    _problem_fk(),
    sa.Column("notes", sa.Text),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
)

symptoms = sa.Table(
    "symptoms", metadata,
    _pk("symptom_id"),
    _problem_fk(),
    sa.Column("symptom_description", sa.Text, nullable=False),
    sa.Column("symptom_type", sa.Text, nullable=False),
    sa.Column("occurrence_condition", sa.Text),
    sa.Column("frequency", sa.Text),
    *_timestamps(),
)

dtc_codes = sa.Table(
    "dtc_codes", metadata,
    _pk("dtc_id"),
    _problem_fk(),
    sa.Column("dtc_code", sa.Text, nullable=False),
    sa.Column("dtc_description", sa.Text),
    # Powertrain, Chassis, Body, Network
    sa.Column("dtc_type", sa.Text, nullable=False),
    sa.Column("obd_standard", sa.Text),
    *_timestamps(),
)

sensors = sa.Table(
    "sensors", metadata,
    _pk("sensor_id"),
    _problem_fk(),
    sa.Column("sensor_name", sa.Text, nullable=False),
    sa.Column("sensor_location", sa.Text),
    sa.Column("failure_mode", sa.Text),
    sa.Column("testing_method", sa.Text),
    *_timestamps(),
)

actuators = sa.Table(
    "actuators", metadata,
    _pk("actuator_id"),
    _problem_fk(),
    sa.Column("actuator_name", sa.Text, nullable=False),
    sa.Column("actuator_type", sa.Text),
    sa.Column("failure_symptoms", sa.Text),
    sa.Column("testing_procedure", sa.Text),
    *_timestamps(),
)

parts_factors = sa.Table(
    "parts_factors", metadata,
    _pk("part_id"),
    _problem_fk(),
    sa.Column("component_name", sa.Text, nullable=False),
    sa.Column("component_type", sa.Text),
    sa.Column("failure_cause", sa.Text),
    sa.Column("wear_indicator", sa.Text),
    sa.Column("replacement_interval", sa.Text),
    *_timestamps(),
)

solutions = sa.Table(
    "solutions", metadata,
    _pk("solution_id"),
    _problem_fk(),
    sa.Column("step_order", sa.Integer, nullable=False),
    sa.Column("solution_step", sa.Text, nullable=False),
    sa.Column("difficulty_level", sa.Text),
    sa.Column("estimated_time", sa.Integer),
    sa.Column("special_notes", sa.Text),
    sa.Column("is_ai_generated", sa.Boolean, default=False),
    *_timestamps(),
)

tools = sa.Table(
    "tools", metadata,
    _pk("tool_id"),
    sa.Column(
        "solution_id",
        sa.String(36),
        sa.ForeignKey("solutions.solution_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    sa.Column("tool_name", sa.Text, nullable=False),
    sa.Column("tool_category", sa.Text),
    sa.Column("tool_specification", sa.Text),
    sa.Column("alternative_tool", sa.Text),
    sa.Column("is_mandatory", sa.Boolean, default=False),
    *_timestamps(),
)

technical_theory = sa.Table(
    "technical_theory", metadata,
    _pk("theory_id"),
    _problem_fk(),
    sa.Column("theory_title", sa.Text, nullable=False),
    sa.Column("technical_explanation", sa.Text),
    sa.Column("system_operation", sa.Text),
    sa.Column("failure_mechanism", sa.Text),
    sa.Column("preventive_measures", sa.Text),
    sa.Column("reference_links", sa.Text),
    sa.Column("is_ai_generated", sa.Boolean, default=False),
    *_timestamps(),
)

safety_precautions = sa.Table(
    "safety_precautions", metadata,
    _pk("safety_id"),
    _problem_fk(),
    sa.Column("safety_description", sa.Text, nullable=False),
    sa.Column("precaution_type", sa.Text),
    sa.Column("hazard_type", sa.Text),
    sa.Column("ppe_required", sa.Text),
    sa.Column("emergency_procedure", sa.Text),
    # Caution, Warning, Danger
    sa.Column("warning_level", sa.Text),
    *_timestamps(),
)

cost_estimation = sa.Table(
    "cost_estimation", metadata,
    _pk("cost_id"),
    _problem_fk(),
    sa.Column("part_cost_min", sa.Numeric),
    sa.Column("part_cost_max", sa.Numeric),
    sa.Column("labor_cost", sa.Numeric),
    sa.Column("total_cost_estimate", sa.Numeric),
    sa.Column("currency", sa.Text, default="IDR"),
    sa.Column("last_updated", sa.DateTime(timezone=True)),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
)

problem_relations = sa.Table(
    "problem_relations", metadata,
    _pk("relation_id"),
    sa.Column(
        "primary_problem_id", sa.String(36),
        sa.ForeignKey("problems.problem_id", ondelete="CASCADE"), nullable=False,
    ),
    sa.Column(
        "related_problem_id", sa.String(36),
        sa.ForeignKey("problems.problem_id", ondelete="CASCADE"), nullable=False,
    ),
    # Causes, Related To, Symptom Of, Consequence Of
    sa.Column("relation_type", sa.Text, nullable=False),
    sa.Column("is_ai_generated", sa.Boolean, default=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
)

search_queries = sa.Table(
    "search_queries", metadata,
    sa.Column("id", sa.String(36), primary_key=True, default=_uuid_str),
    sa.Column("original_query", sa.Text, nullable=False),
    sa.Column("translated_keywords", KEYWORD_LIST, nullable=True),
    sa.Column("search_count", sa.Integer, nullable=True, default=1, server_default="1"),
    sa.Column("has_results", sa.Boolean, nullable=True),
    sa.Column("last_searched_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
)

# Registry used by the generic entity store, keyed by collection name
ENTITY_TABLES = MappingProxyType({table.name: table for table in metadata.sorted_tables})

# Text fields that take part in keyword matching, per searched collection.
# Order of the collections is the order of the groups in a result bundle.
SEARCH_FIELDS = MappingProxyType({
    "problems": ("problem_name", "description", "problem_code"),
    "symptoms": ("symptom_description", "occurrence_condition"),
    "dtc_codes": ("dtc_code", "dtc_description"),
    "sensors": ("sensor_name", "failure_mode"),
    "actuators": ("actuator_name", "failure_symptoms"),
})

# Child collections attached to every matched problem
PROBLEM_CHILDREN = (
    "symptoms",
    "solutions",
    "dtc_codes",
    "sensors",
    "actuators",
    "parts_factors",
    "technical_theory",
    "safety_precautions",
    "cost_estimation",
)

# Collections counted on the dashboard
DASHBOARD_COLLECTIONS = (
    "vehicle_models",
    "problems",
    "symptoms",
    "dtc_codes",
    "sensors",
    "actuators",
    "parts_factors",
)


def primary_key_column(table: sa.Table) -> sa.Column:
    """Return the single primary key column of a knowledge-base table."""
    return list(table.primary_key.columns)[0]
