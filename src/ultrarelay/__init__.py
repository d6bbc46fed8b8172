"""
This distribution package consists of two main components:

1. Ultrarelay Service (daemon):
   - Samples an analog ultrasonic distance sensor at a fixed interval.
   - Publishes readings and relay status to an MQTT broker.
   - Drives a Modbus RTU relay from a distance threshold or from remote override commands.

2. Ultrarelay Control (CLI):
   - Provides a command-line tool for controlling the running Ultrarelay Service.
   - Allows users to force the relay on/off, return it to automatic mode and print its status.

"""

__version__ = "0.1.0"
