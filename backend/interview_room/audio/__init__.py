from interview_room.audio.devices import (
    AudioDeviceManager,
    MicrophoneHandle,
    NullAudioManager,
    SoundDeviceAudioManager,
    build_audio_manager,
)

__all__ = [
    "AudioDeviceManager",
    "MicrophoneHandle",
    "NullAudioManager",
    "SoundDeviceAudioManager",
    "build_audio_manager",
]
