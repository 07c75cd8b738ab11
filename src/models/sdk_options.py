"""
SDK Options Schemas

Session-level configuration handed to SdkSession.initialize():
control flags, network listen port and frame emission options.
"""

from pydantic import BaseModel, Field, model_validator

from .enums import FrameMode

DEFAULT_PORT = 8808
DEFAULT_FRAME_LENGTH = 0.05


class FrameOptions(BaseModel):
    """Frame emission options (frame length gates frame callback frequency)"""

    mode: FrameMode = Field(FrameMode.STREAMING, description="Frame grouping mode")
    length: float = Field(DEFAULT_FRAME_LENGTH, ge=0, description="Frame length [seconds]")

    @model_validator(mode="after")
    def _check_length(self) -> "FrameOptions":
        if self.mode == FrameMode.TIMED and self.length <= 0:
            raise ValueError("frame length must be positive in TIMED mode")
        return self

    @property
    def length_us(self) -> int:
        return int(round(self.length * 1e6))


class SdkOptions(BaseModel):
    """Options accepted by SdkSession.initialize()"""

    control_flags: int = Field(0, ge=0, description="Control flag bitmask")
    port: int = Field(DEFAULT_PORT, ge=1, le=65535, description="Network listen port")
    frame: FrameOptions = Field(default_factory=FrameOptions)

    @classmethod
    def from_config(cls, app_config) -> "SdkOptions":
        """Build default options from the application Config"""
        return cls(
            control_flags=int(app_config.get("network", "control_flags", 0)),
            port=app_config.get("network", "port", DEFAULT_PORT),
            frame=FrameOptions(
                mode=FrameMode[str(app_config.get("frame", "mode", "STREAMING")).upper()],
                length=app_config.get("frame", "length", DEFAULT_FRAME_LENGTH),
            ),
        )
