"""
Audio Dubbing

Replaces the narration of an audio file with a translated, synthesized voice
while keeping the background music:
- Decode the upload to canonical PCM
- Extract an instrumental bed by suppressing the vocals
- Transcribe, translate and synthesize the narration
- Mix the new voice over the instrumental and encode to MP3
"""

__version__ = "1.0.0"
