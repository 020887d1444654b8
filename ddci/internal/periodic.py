"""Background services: an attrs-based start/stop lifecycle and worker threads that run a function periodically."""

import abc
import enum
import threading
import typing as t

import attr


class ServiceStatus(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class ServiceStatusError(RuntimeError):
    def __init__(self, service_cls: type, current_status: ServiceStatus) -> None:
        self.current_status = current_status
        super().__init__("%s is already %s" % (service_cls.__name__, current_status.value))


@attr.s(eq=False)
class Service(metaclass=abc.ABCMeta):
    """Something that can be started once and stopped once."""

    status = attr.ib(default=ServiceStatus.STOPPED, type=ServiceStatus, init=False)
    _service_lock = attr.ib(factory=threading.Lock, repr=False, init=False)

    def start(self) -> None:
        with self._service_lock:
            if self.status == ServiceStatus.RUNNING:
                raise ServiceStatusError(self.__class__, self.status)
            self._start_service()
            self.status = ServiceStatus.RUNNING

    def stop(self) -> None:
        with self._service_lock:
            if self.status == ServiceStatus.STOPPED:
                raise ServiceStatusError(self.__class__, self.status)
            self._stop_service()
            self.status = ServiceStatus.STOPPED

    @abc.abstractmethod
    def _start_service(self) -> None:
        """Called with the service lock held."""

    @abc.abstractmethod
    def _stop_service(self) -> None:
        """Called with the service lock held."""

    def join(self, timeout: t.Optional[float] = None) -> None:
        pass


class PeriodicThread(threading.Thread):
    """Daemon thread calling `target` every `interval` seconds, then `on_shutdown` once stopped."""

    def __init__(
        self,
        interval: float,
        target: t.Callable[[], t.Any],
        name: t.Optional[str] = None,
        on_shutdown: t.Optional[t.Callable[[], t.Any]] = None,
    ) -> None:
        super().__init__(name=name, daemon=True)
        self._target = target
        self._on_shutdown = on_shutdown
        self.interval = interval
        self.quit = threading.Event()

    def stop(self) -> None:
        if self.is_alive():
            self.quit.set()

    def run(self) -> None:
        while not self.quit.wait(self.interval):
            self._target()
        if self._on_shutdown is not None:
            self._on_shutdown()


class AwakeablePeriodicThread(PeriodicThread):
    """
    Periodic thread that can also be woken up on demand.

    The target runs once as soon as the thread starts, then after every interval or wake-up request, whichever comes
    first.
    """

    def __init__(
        self,
        interval: float,
        target: t.Callable[[], t.Any],
        name: t.Optional[str] = None,
        on_shutdown: t.Optional[t.Callable[[], t.Any]] = None,
    ) -> None:
        super().__init__(interval, target, name, on_shutdown)
        self.request = threading.Event()

    def awake(self) -> None:
        self.request.set()

    def stop(self) -> None:
        super().stop()
        self.request.set()

    def run(self) -> None:
        while not self.quit.is_set():
            self._target()
            if self.request.wait(self.interval):
                self.request.clear()
        if self._on_shutdown is not None:
            self._on_shutdown()


@attr.s(eq=False)
class PeriodicService(Service):
    """A service whose work is done by `periodic()` in a dedicated thread."""

    _interval = attr.ib(type=float)
    _worker = attr.ib(default=None, init=False, repr=False)

    __thread_class__: t.Type[PeriodicThread] = PeriodicThread

    @property
    def interval(self) -> float:
        return self._interval

    def _start_service(self) -> None:
        self._worker = self.__thread_class__(
            self._interval,
            target=self.periodic,
            name="%s:%s" % (self.__class__.__module__, self.__class__.__name__),
            on_shutdown=self.on_shutdown,
        )
        self._worker.start()

    def _stop_service(self) -> None:
        self._worker.stop()

    def join(self, timeout: t.Optional[float] = None) -> None:
        if self._worker is not None:
            self._worker.join(timeout)

    def periodic(self) -> None:
        pass

    def on_shutdown(self) -> None:
        pass


@attr.s(eq=False)
class AwakeablePeriodicService(PeriodicService):
    __thread_class__ = AwakeablePeriodicThread

    def awake(self) -> None:
        if self._worker is not None:
            self._worker.awake()
