# Servo Sequence Library
# Provides serial channel, step codec, sequence store, player and device listener

from .command_encoder import Step, encode_step, decode_line, encode_sequence_to_text, iter_decoded_lines
from .serial_channel import SerialChannel, find_device_port, open_channel
from .sequence_store import SequenceStore
from .sequence_player import SequencePlayer, PlayerState, PlaybackTiming
from .device_listener import DeviceListener
from .exceptions import (
    ServoLinkError,
    DeviceUnavailableError,
    MalformedLineError,
    StorageWriteError,
    ChannelWriteError,
    ChannelReadError,
)
