class ServiceException(Exception):
    pass


class APINotStarted(ServiceException):
    pass


class ServiceNotStarted(ServiceException):
    pass


class ErrorDuringShutdown(ServiceException):
    pass


class ServiceAlreadyRunning(ServiceException):
    pass


class ConfigurationError(ServiceException):
    pass


class InvalidConfiguration(ConfigurationError):
    pass


class MissingConfigurationField(ConfigurationError):

    def __init__(self, field):
        self.field = field
        super().__init__(f"Missing configuration field: {field}")


class SensorError(ServiceException):
    pass


class DeviceUnavailable(SensorError):

    def __init__(self, path, reason):
        self.path = path
        self.reason = reason
        super().__init__(f"Sensor device unavailable: {path} ({reason})")


class InvalidData(SensorError):

    def __init__(self, path, content):
        self.path = path
        self.content = content
        super().__init__(f"Invalid sensor data in {path}: {content!r}")


class ActuatorError(ServiceException):
    pass


class DeviceMissing(ActuatorError):

    def __init__(self, port):
        self.port = port
        super().__init__(f"Relay serial device not found: {port}")


class WriteFailed(ActuatorError):

    def __init__(self, port, reason):
        self.port = port
        self.reason = reason
        super().__init__(f"Relay write failed on {port}: {reason}")


class ChannelError(ServiceException):
    pass


class ConnectionLost(ChannelError):
    pass


class PublishFailed(ChannelError):

    def __init__(self, topic, reason):
        self.topic = topic
        self.reason = reason
        super().__init__(f"Publish to `{topic}` failed: {reason}")
