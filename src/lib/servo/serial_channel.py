"""
Serial Channel for the servo controller board.
Single exclusive line to the device: one command line at a time, in order.

Protocol:
  <servo>,<angle>,<speed>\\n   : Move servo (device-bound)
  SEQUENCE_START / SEQUENCE,<s>,<a>,<sp> / SEQUENCE_END : capture (device-originated)
"""

import logging
import threading
import time

import serial
import serial.tools.list_ports

from .exceptions import DeviceUnavailableError, ChannelWriteError, ChannelReadError

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 9600
RESET_DELAY_SEC = 2.0  # Arduino resets when the port opens


def list_ports():
    """Return available ports as dicts: {'port', 'desc', 'manufacturer'}."""
    result = []
    for info in serial.tools.list_ports.comports():
        result.append({
            'port': info.device,
            'desc': info.description or "",
            'manufacturer': info.manufacturer or "",
        })
    return result


def find_device_port(ports=None):
    """
    Pick the serial port of the servo board.

    Priority: a port whose manufacturer mentions "Arduino",
    otherwise the first available port.

    Raises:
        DeviceUnavailableError: if no port is available.
    """
    if ports is None:
        ports = list_ports()

    if not ports:
        raise DeviceUnavailableError("No serial ports available")

    for p in ports:
        if "Arduino" in p.get('manufacturer', ""):
            logger.info(f"[SerialChannel] Arduino found on {p['port']}")
            return p['port']

    logger.warning(f"[SerialChannel] No Arduino identified, using first port: {ports[0]['port']}")
    return ports[0]['port']


class SerialChannel:
    """
    Wraps a pyserial port. All writes go through one lock so that
    commands from playback and live moves never interleave.

    Writes have no timeout: a stalled device blocks every later writer.
    """

    def __init__(self, ser=None):
        """
        Args:
            ser: Already-open serial-like object (tests inject a fake).
        """
        self.ser = ser
        self._lock = threading.Lock()

    @property
    def port(self):
        return getattr(self.ser, 'port', None)

    def connect(self, port, baudrate=DEFAULT_BAUDRATE, read_timeout=1.0):
        """
        Open the serial port.

        Raises:
            DeviceUnavailableError: if the port cannot be opened.
        """
        try:
            self.ser = serial.Serial(port, baudrate, timeout=read_timeout)
        except serial.SerialException as e:
            raise DeviceUnavailableError(f"Serial connection failed: {e}", port=port) from e

        time.sleep(RESET_DELAY_SEC)
        self.ser.reset_input_buffer()
        logger.info(f"[SerialChannel] Connected to {port} @ {baudrate}bps")

    def disconnect(self):
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.info("[SerialChannel] Disconnected")
        self.ser = None

    def is_connected(self):
        return self.ser is not None and self.ser.is_open

    def _write(self, line):
        if not self.is_connected():
            raise ChannelWriteError("Serial port is not open")
        try:
            self.ser.write(line.encode('ascii'))
        except (serial.SerialException, OSError) as e:
            raise ChannelWriteError(f"Write failed: {e}", port=self.port) from e

    def write_line(self, line):
        """Write one command line (must end with a newline)."""
        with self._lock:
            self._write(line)

    def write_lines(self, lines):
        """Write several command lines back-to-back without releasing the lock."""
        with self._lock:
            for line in lines:
                self._write(line)

    def read_line(self):
        """
        Read one line from the device.

        Returns the decoded line without its terminator, or None when the
        read timed out with nothing received.
        """
        if not self.is_connected():
            raise ChannelReadError("Serial port is not open")
        try:
            raw = self.ser.readline()
        except (serial.SerialException, OSError) as e:
            raise ChannelReadError(f"Read failed: {e}", port=self.port) from e

        if not raw:
            return None
        return raw.decode('utf-8', errors='replace').rstrip("\r\n")


def open_channel(port=None, baudrate=DEFAULT_BAUDRATE, read_timeout=1.0):
    """
    Discover (when port is None) and open the device channel.

    Raises:
        DeviceUnavailableError: no port found or the port failed to open.
    """
    if port is None:
        port = find_device_port()

    channel = SerialChannel()
    channel.connect(port, baudrate, read_timeout)
    return channel
