"""Pytest configuration and shared fixtures for the tool clustering tests."""

import itertools

import pytest

from preprocessing import (
    TOOL_NAME, PRIMARY_FUNCTION, DATA_SOURCES, TARGET_USER,
    ENVIRONMENT_TYPE, DESCRIPTION
)


def make_tool(name="", primary_function="", data_sources="", target_user="",
              environment_type="", description=""):
    """Helper to create a tool record with catalog column names."""
    return {
        TOOL_NAME: name,
        PRIMARY_FUNCTION: primary_function,
        DATA_SOURCES: data_sources,
        TARGET_USER: target_user,
        ENVIRONMENT_TYPE: environment_type,
        DESCRIPTION: description,
    }


SAMPLE_CSV = """Tool Name,Primary Function,Data Sources,Target User/Client,Environment Type,Description
Global Forest Watch,Satellite monitoring of forest change,"Satellite imagery, Land cover maps","Governments, NGOs",Terrestrial,Near real-time forest loss alerts
Forest Alerts,Satellite monitoring of forest change,"Satellite imagery, Land cover maps","Governments, NGOs",Terrestrial,Deforestation alert feed
Aqueduct,Water risk mapping,"Hydrological models; Satellite data","Corporates, Investors",Freshwater,Maps water stress
"""


@pytest.fixture
def sample_tools():
    """A small catalog with two near-duplicate tools."""
    return [
        make_tool("Global Forest Watch", "Satellite monitoring of forest change",
                  "Satellite imagery, Land cover maps", "Governments, NGOs",
                  "Terrestrial", "Near real-time forest loss alerts"),
        make_tool("Forest Alerts", "Satellite monitoring of forest change",
                  "Satellite imagery, Land cover maps", "Governments, NGOs",
                  "Terrestrial", "Deforestation alert feed"),
        make_tool("Global Fishing Watch", "Satellite monitoring of fishing activity",
                  "Satellite AIS, Vessel registries", "Governments, NGOs",
                  "Marine", "Tracks commercial fishing vessels"),
        make_tool("Aqueduct", "Water risk mapping",
                  "Hydrological models, Satellite data", "Corporates, Investors",
                  "Freshwater", "Maps water stress and flood risk"),
        make_tool("ENCORE", "Nature risk screening",
                  "Scientific literature, Expert input", "Financial institutions, Corporates",
                  "Multiple", "How businesses depend on and impact nature"),
        make_tool("Biodiversity Credit Exchange", "Biodiversity credit trading",
                  "Registry data", "Investors, Landowners",
                  "Multiple", "Blockchain ledger for biodiversity credits"),
    ]


@pytest.fixture
def sample_csv():
    """CSV text for three tools."""
    return SAMPLE_CSV


@pytest.fixture
def id_generator():
    """Deterministic stand-in for the random fallback id source."""
    counter = itertools.count(1)
    return lambda: f"generated-{next(counter)}"


@pytest.fixture
def three_point_matrix():
    """Distances d(1,2)=0.2, d(1,3)=0.5, d(2,3)=0.6."""
    return [
        [0.0, 0.2, 0.5],
        [0.2, 0.0, 0.6],
        [0.5, 0.6, 0.0],
    ]
