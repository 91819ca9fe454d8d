import argparse
import sys
import xml.etree.ElementTree as ET
from collections.abc import Callable
from pathlib import Path

import pytest

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))

import codegen  # noqa: E402

SETTINGS_XML = """\
<Settings>
  <Prefix Value="Canvas"/>
  <FilenameBase Value="Canvas"/>
  <RootNamespace Value="Microsoft.Graphics.Canvas"/>
  <Copyright Value="Copyright (c) Example Corp. All rights reserved."/>
  <TypeDocument Path="apiref/Types.xml"/>
  <TypeDocument Path="apiref/Types2.xml"/>
  <Primitive Name="FLOAT" ProjectedNameOverride="float"/>
  <Namespace Name="D2D1">
    <Enum Name="ARC_SIZE"/>
    <Enum Name="CAP_STYLE">
      <Field Name="TRIANGLE" ShouldProject="false"/>
    </Enum>
    <Struct Name="POINT_2F" ShouldProject="true" ProjectedNameOverride="Point2"/>
    <Struct Name="IMAGE_BRUSH_PROPERTIES" ShouldProject="true" Guid="11111111-2222-3333-4444-555555555555"/>
    <Interface Name="Image" ShouldProject="true" IsProjectedAsAbstract="true"/>
  </Namespace>
  <Namespace Name="Effects">
    <Enum Name="SpotSpecularEffectScaleMode" ProjectedNameOverride="CanvasImageInterpolation" Namespace="Microsoft.Graphics.Canvas" ShouldProject="false"/>
    <Effect Name="Spot Specular">
      <Property Name="PointsAt" ProjectedNameOverride="LightTarget"/>
      <Property Name="LimitingConeAngle" ConvertRadiansToDegrees="true"/>
    </Effect>
    <Effect Name="Gaussian Blur" Uuid="1feb6d69-2fe6-4ac9-8c58-1d7f93e7a6a5"/>
    <Effect Name="3D Transform" WinVer="Win10" IsSupportedCheck="SharedDeviceState::IsWin10">
      <Static>[propget] HRESULT Identity([out, retval] float* value);</Static>
    </Effect>
  </Namespace>
</Settings>
"""

TYPES_XML = """\
<D2DTypes>
  <Primitive Name="FLOAT"/>
  <Primitive Name="UINT32"/>
  <Namespace Name="D2D1" ApiName="D2D1">
    <Enum Name="ARC_SIZE" IsFlags="true">
      <Field Name="LARGE" Value="1"/>
      <Field Name="SMALL" Value="0"/>
    </Enum>
    <Enum Name="CAP_STYLE">
      <Field Name="FLAT" Value="0"/>
      <Field Name="ROUND" Value="2"/>
      <Field Name="TRIANGLE" Value="3"/>
    </Enum>
    <Struct Name="POINT_2F">
      <Field Name="x" Type="FLOAT"/>
      <Field Name="y" Type="FLOAT"/>
    </Struct>
  </Namespace>
</D2DTypes>
"""

TYPES2_XML = """\
<D2DTypes>
  <Namespace Name="D2D1" ApiName="D2D1">
    <Struct Name="IMAGE_BRUSH_PROPERTIES">
      <Field Name="image" Type="D2D1::Image"/>
      <Field Name="opacity" Type="FLOAT"/>
    </Struct>
    <Interface Name="Image">
      <Method Name="GetSize" ReturnType="D2D1::POINT_2F" IsConst="true"/>
      <Method Name="Draw" ReturnType="void">
        <Parameter Name="offset" Type="D2D1::POINT_2F"/>
      </Method>
    </Interface>
  </Namespace>
</D2DTypes>
"""

SPOT_SPECULAR_XML = """\
<Effect>
  <Property name="DisplayName" type="string" value="Spot Specular"/>
  <Property name="Author" type="string" value="Microsoft Corporation"/>
  <Property name="Category" type="string" value="Lighting"/>
  <Property name="Description" type="string" value="Spot specular light."/>
  <Inputs>
    <Input name="Source"/>
  </Inputs>
  <Property name="LightPosition" type="vector3">
    <Property name="DisplayName" type="string" value="Light Position"/>
    <Property name="Default" type="vector3" value="( 0.0, 0.0, 0.0 )"/>
  </Property>
  <Property name="PointsAt" type="vector3">
    <Property name="DisplayName" type="string" value="Points At"/>
    <Property name="Default" type="vector3" value="( 0.0, 0.0, 0.0 )"/>
  </Property>
  <Property name="Focus" type="float">
    <Property name="DisplayName" type="string" value="Focus"/>
    <Property name="Min" type="float" value="-10000.0"/>
    <Property name="Max" type="float" value="10000.0"/>
    <Property name="Default" type="float" value="1.0"/>
  </Property>
  <Property name="LimitingConeAngle" type="float">
    <Property name="DisplayName" type="string" value="Limiting Cone Angle"/>
    <Property name="Default" type="float" value="90"/>
  </Property>
  <Property name="Color" type="vector3">
    <Property name="DisplayName" type="string" value="Color"/>
    <Property name="Default" type="vector3" value="( 1.0, 1.0, 1.0 )"/>
  </Property>
  <Property name="KernelUnitLength" type="vector2">
    <Property name="DisplayName" type="string" value="Kernel Unit Length"/>
    <Property name="Min" type="vector2" value="( 0.01, 0.01 )"/>
    <Property name="Max" type="vector2" value="( 100.0, 100.0 )"/>
    <Property name="Default" type="vector2" value="( 1.0, 1.0 )"/>
  </Property>
  <Property name="ScaleMode" type="enum">
    <Property name="DisplayName" type="string" value="Scale Mode"/>
    <Property name="Default" type="enum" value="1"/>
    <Fields>
      <Field name="NearestNeighbor" displayname="Nearest Neighbor" index="0"/>
      <Field name="Linear" displayname="Linear" index="1"/>
      <Field name="Cubic" displayname="Cubic" index="2"/>
    </Fields>
  </Property>
</Effect>
"""

GAUSSIAN_BLUR_XML = """\
<Effect>
  <Property name="DisplayName" type="string" value="Gaussian Blur"/>
  <Inputs>
    <Input name="Source"/>
  </Inputs>
  <Property name="StandardDeviation" type="float">
    <Property name="Default" type="float" value="3.0"/>
  </Property>
  <Property name="BorderMode" type="enum">
    <Property name="Default" type="enum" value="0"/>
    <Fields>
      <Field name="Soft" displayname="Soft" index="0"/>
      <Field name="Hard" displayname="Hard" index="1"/>
    </Fields>
  </Property>
</Effect>
"""

TRANSFORM_3D_XML = """\
<Effect>
  <Property name="DisplayName" type="string" value="3D Transform"/>
  <Inputs>
    <Input name="Source"/>
  </Inputs>
  <Property name="BorderMode" type="enum">
    <Property name="Default" type="enum" value="0"/>
    <Fields>
      <Field name="Soft" displayname="Soft" index="0"/>
      <Field name="Hard" displayname="Hard" index="1"/>
      <Field name="Mirror" displayname="Mirror" index="2"/>
    </Fields>
  </Property>
  <Property name="TransformMatrix" type="matrix4x4">
    <Property name="Default" type="matrix4x4" value="( 1.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 0.0, 1.0 )"/>
  </Property>
</Effect>
"""

COMPOSITE_XML = """\
<Effect>
  <Property name="DisplayName" type="string" value="Composite"/>
  <Inputs minimum="1" maximum="0xFFFFFFFF">
    <Input name="Destination"/>
    <Input name="Source"/>
  </Inputs>
  <Property name="Mode" type="enum">
    <Property name="Default" type="enum" value="0"/>
    <Fields>
      <Field name="SourceOver" displayname="Source Over" index="0"/>
      <Field name="DestinationOver" displayname="Destination Over" index="1"/>
    </Fields>
  </Property>
</Effect>
"""

NATIVE_HEADER = """\
//+--------------------------------------------------------------------------
//  Effect enums
//---------------------------------------------------------------------------

typedef enum D2D1_SPOTSPECULAR_PROP
{
    D2D1_SPOTSPECULAR_PROP_LIGHT_POSITION = 0,
    D2D1_SPOTSPECULAR_PROP_FORCE_DWORD = 0xffffffff

} D2D1_SPOTSPECULAR_PROP;

typedef enum D2D1_SPOTSPECULAR_SCALE_MODE
{
    D2D1_SPOTSPECULAR_SCALE_MODE_NEAREST_NEIGHBOR = 0,
    D2D1_SPOTSPECULAR_SCALE_MODE_LINEAR = 1,
    D2D1_SPOTSPECULAR_SCALE_MODE_CUBIC = 2,
    D2D1_SPOTSPECULAR_SCALE_MODE_FORCE_DWORD = 0xffffffff

} D2D1_SPOTSPECULAR_SCALE_MODE;

typedef enum D2D1_BORDER_MODE
{
    D2D1_BORDER_MODE_SOFT = 0,
    D2D1_BORDER_MODE_HARD = 1,
    D2D1_BORDER_MODE_FORCE_DWORD = 0xffffffff

} D2D1_BORDER_MODE;

typedef enum D2D1_3DTRANSFORM_BORDER_MODE
{
    // Soft edges
    D2D1_3DTRANSFORM_BORDER_MODE_SOFT = 0,
    D2D1_3DTRANSFORM_BORDER_MODE_HARD = 1,
    D2D1_3DTRANSFORM_BORDER_MODE_MIRROR = 2,
    D2D1_3DTRANSFORM_BORDER_MODE_FORCE_DWORD = 0xffffffff

} D2D1_3DTRANSFORM_BORDER_MODE;
"""


@pytest.fixture
def make_settings() -> Callable[[str], codegen.Settings]:
    def _make_settings(inner_xml: str = "") -> codegen.Settings:
        return codegen.parse_settings(
            ET.fromstring(
                "<Settings><Prefix Value=\"Canvas\"/>"
                "<RootNamespace Value=\"Microsoft.Graphics.Canvas\"/>"
                f"{inner_xml}</Settings>"
            )
        )

    return _make_settings


@pytest.fixture
def make_types_root() -> Callable[[str], ET.Element]:
    def _make_types_root(inner_xml: str) -> ET.Element:
        return ET.fromstring(f"<D2DTypes>{inner_xml}</D2DTypes>")

    return _make_types_root


@pytest.fixture
def make_effect() -> Callable[[str], codegen.Effect]:
    def _make_effect(xml: str) -> codegen.Effect:
        return codegen.parse_effect(ET.fromstring(xml))

    return _make_effect


@pytest.fixture
def sample_effects(make_effect) -> list[codegen.Effect]:
    return [
        make_effect(xml)
        for xml in (SPOT_SPECULAR_XML, GAUSSIAN_BLUR_XML, TRANSFORM_3D_XML, COMPOSITE_XML)
    ]


@pytest.fixture
def sample_settings() -> codegen.Settings:
    return codegen.parse_settings(ET.fromstring(SETTINGS_XML))


@pytest.fixture
def processed_effects(sample_effects, sample_settings) -> list[codegen.Effect]:
    natives = codegen.parse_native_enums(NATIVE_HEADER)
    codegen.process_effects(sample_effects, sample_settings, natives)
    return sample_effects


@pytest.fixture
def input_tree(tmp_path: Path) -> dict[str, Path]:
    input_dir = tmp_path / "tools" / "codegen" / "exe"
    effects_dir = input_dir / "apiref" / "effects"
    effects_dir.mkdir(parents=True)
    (input_dir / "Settings.xml").write_text(SETTINGS_XML, encoding="utf-8")
    (input_dir / "apiref" / "Types.xml").write_text(TYPES_XML, encoding="utf-8")
    (input_dir / "apiref" / "Types2.xml").write_text(TYPES2_XML, encoding="utf-8")
    for name, xml in (
        ("SpotSpecular.xml", SPOT_SPECULAR_XML),
        ("GaussianBlur.xml", GAUSSIAN_BLUR_XML),
        ("3DTransform.xml", TRANSFORM_3D_XML),
        ("Composite.xml", COMPOSITE_XML),
    ):
        (effects_dir / name).write_text(xml, encoding="utf-8")

    header = tmp_path / "sdk" / "d2d1effects.h"
    header.parent.mkdir()
    header.write_text(NATIVE_HEADER, encoding="utf-8")

    return {
        "root": tmp_path,
        "input_dir": input_dir,
        "header": header,
        "output_dir": tmp_path / "out" / "lib",
        "effects_output_dir": tmp_path / "out" / "effects",
    }


@pytest.fixture
def make_args(input_tree: dict[str, Path]) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "input_dir": input_tree["input_dir"],
            "output_dir": input_tree["output_dir"],
            "effects_output_dir": input_tree["effects_output_dir"],
            "sdk_dir": None,
            "native_header": [input_tree["header"]],
            "no_effects": False,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args


@pytest.fixture
def generate_config(input_tree: dict[str, Path]) -> codegen.GenerateConfig:
    return codegen.GenerateConfig(
        input_dir=input_tree["input_dir"],
        output_dir=input_tree["output_dir"],
        effects_output_dir=input_tree["effects_output_dir"],
        native_headers=(input_tree["header"],),
    )
