from transcoder_rotator.server.rotator import TranscoderRotator

__all__ = ["TranscoderRotator"]
