"""
Yeelight Model Catalog

Static table of supported Yeelight models, their capabilities and LED
layouts. Unknown models resolve to a conservative single-zone profile.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

try:
    import udi_interface
    LOGGER = udi_interface.LOGGER
except ImportError:
    LOGGER = logging.getLogger(__name__)


FALLBACK_MODEL = "Yeelight Device"
IMAGE_BASE = "https://assets.signalrgb.com/devices/brands/yeelight"


@dataclass(frozen=True)
class ModelProfile:
    """Capabilities and layout of a Yeelight model"""
    model_id: str
    display_name: str
    supports_standard_rgb: bool = True
    supports_background_rgb: bool = False
    supports_per_led: bool = False
    supports_segments: bool = False
    uses_components: bool = False
    led_positions: Tuple[Tuple[int, int], ...] = ((0, 0),)
    led_names: Tuple[str, ...] = ("Main Zone",)
    channel_name: str = "Channel 1"
    size: Tuple[int, int] = (3, 1)
    default_count: int = 1
    max_led_limit: int = 1
    image_url: str = ""

    @property
    def led_count(self) -> int:
        """Number of addressable layout positions"""
        return len(self.led_positions)


def _component_profile(model_id: str, display_name: str, default_count: int,
                       max_led_limit: int, image: str) -> ModelProfile:
    """Profile for a channel-addressed (component) device"""
    return ModelProfile(
        model_id=model_id,
        display_name=display_name,
        supports_standard_rgb=True,
        supports_background_rgb=False,
        supports_per_led=True,
        supports_segments=False,
        uses_components=True,
        led_positions=((0, 0),),
        led_names=("Channel 1",),
        size=(1, 1),
        default_count=default_count,
        max_led_limit=max_led_limit,
        image_url=f"{IMAGE_BASE}/{image}",
    )


# Model code -> display name
MODEL_NAMES: Dict[str, str] = {
    "lamp15": "Monitor Lightbar Pro",
    "CubeMatrix": "Cube Matrix",
    "CubePanel": "Cube Panel",
    "CubeSpot": "Cube Spot",
    "CubeLite": "Cube Lite",
    "RaysLight": "Beam RGBIC Lightbar",
    "Chameleon2": "Obsid RGBIC Light Strip",
}

MODEL_IDS: Dict[str, str] = {name: model_id for model_id, name in MODEL_NAMES.items()}

# Display name -> profile
MODEL_PROFILES: Dict[str, ModelProfile] = {
    "Monitor Lightbar Pro": ModelProfile(
        model_id="lamp15",
        display_name="Monitor Lightbar Pro",
        supports_standard_rgb=False,
        supports_background_rgb=True,
        supports_segments=True,
        image_url=f"{IMAGE_BASE}/monitor-light-bar-pro.png",
    ),
    # Cubes are 25 LEDs per panel, up to 6 panels
    "Cube Matrix": _component_profile("CubeMatrix", "Cube Matrix", 1, 150, "cube-matrix.png"),
    "Cube Panel": _component_profile("CubePanel", "Cube Panel", 1, 150, "cube-panel.png"),
    "Cube Spot": _component_profile("CubeSpot", "Cube Spot", 1, 150, "cube-spot.png"),
    "Cube Lite": _component_profile("CubeLite", "Cube Lite", 100, 100, "cube-matrix.png"),
    "Obsid RGBIC Light Strip": _component_profile(
        "Chameleon2", "Obsid RGBIC Light Strip", 60, 120, "obsid-rgbic-light-strip.png"),
    "Beam RGBIC Lightbar": _component_profile(
        "RaysLight", "Beam RGBIC Lightbar", 168, 168, "beam-rgbic-light-bar.png"),
    FALLBACK_MODEL: ModelProfile(
        model_id=FALLBACK_MODEL,
        display_name=FALLBACK_MODEL,
        image_url=f"{IMAGE_BASE}/obsid-rgbic-light-strip.png",
    ),
}


def _key(value: Optional[str]) -> str:
    return value.strip() if isinstance(value, str) else ''


def resolve_display_name(model_id: str) -> str:
    """
    Get the display name for a model code.

    Returns:
        Display name, or the model code unchanged if it is not known
    """
    name = MODEL_NAMES.get(_key(model_id))
    if name:
        return name
    LOGGER.warning(f"Unknown Yeelight model code '{_key(model_id)}'")
    return model_id


def resolve_model_id(display_name: str) -> str:
    """
    Get the model code for a display name.

    Returns:
        Model code, or FALLBACK_MODEL if the name is not known
    """
    model_id = MODEL_IDS.get(_key(display_name))
    if model_id:
        return model_id
    LOGGER.warning(f"Could not find model code for device name '{_key(display_name)}'")
    return FALLBACK_MODEL


def is_known_model(model_id: str) -> bool:
    return _key(model_id) in MODEL_NAMES


def resolve_profile(model_id: str) -> ModelProfile:
    """
    Get the profile for a model code. Never raises.

    Args:
        model_id: Model code as reported by discovery (whitespace is ignored)

    Returns:
        ModelProfile for the model, or the fallback profile
    """
    key = _key(model_id)
    profile = MODEL_PROFILES.get(MODEL_NAMES.get(key, ''))
    if profile is None:
        LOGGER.warning(f"Unknown layout for model code '{key}', using {FALLBACK_MODEL} profile")
        profile = MODEL_PROFILES[FALLBACK_MODEL]
    return profile


def effective_profile(model_id: str, record=None) -> ModelProfile:
    """
    Profile to drive a device with.

    Known models always use the static table. For unknown models the
    transport-level flags reported by the device's discovery response
    replace the fallback profile's flags.

    Args:
        model_id: Model code
        record: Optional DeviceRecord from discovery
    """
    profile = resolve_profile(model_id)
    if record is None or is_known_model(model_id):
        return profile

    return replace(
        profile,
        supports_standard_rgb=record.supports_standard_rgb,
        supports_background_rgb=record.supports_background_rgb,
        supports_per_led=record.supports_per_led,
        supports_segments=record.supports_segments,
    )
