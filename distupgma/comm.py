"""
Worker groups and collective communication for distUPGMA.

A worker group is a fixed set of ranks that never share memory. Ranks talk
only through a Communicator, which offers point-to-point messages and the
collectives used by the clustering engine (broadcast, gather, all-reduce).

Three backends are provided:
- SerialCommunicator: a group of one, used in-process
- PipeCommunicator: ranks are multiprocessing processes joined by a full mesh
  of duplex pipes, launched and supervised by WorkerGroup
- MPICommunicator: ranks are MPI processes started by mpirun (needs mpi4py)

Every collective message sent through a PipeCommunicator is tagged with the
operation name and a per-rank sequence number, so a rank whose control flow
has diverged from its peers fails with CollectiveMismatchError instead of
silently consuming the wrong message.
"""

import functools
import logging
import multiprocessing
import sys
from abc import ABC, abstractmethod
from collections import deque
from multiprocessing.connection import Connection, wait
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

ROOT = 0


class CommunicationError(Exception):
    """Base class for failures of the worker group."""
    pass


class CollectiveMismatchError(CommunicationError):
    """Raised when a rank receives a message from a different collective than it called."""
    pass


class WorkerAbortedError(CommunicationError):
    """Raised when a peer closed its channel, usually because it failed."""
    pass


class WorkerGroupError(RuntimeError):
    """Raised by WorkerGroup.run when any rank fails."""

    def __init__(self, rank: int, message: str):
        super().__init__(f"Worker rank {rank} failed: {message}")
        self.rank = rank
        self.message = message


class Request:
    """Handle for a non-blocking send."""

    def wait(self) -> None:
        pass


class Communicator(ABC):
    """Abstract base class for the communicator of one rank."""

    @property
    @abstractmethod
    def rank(self) -> int:
        """Rank of this process within the group."""
        pass

    @property
    @abstractmethod
    def size(self) -> int:
        """Number of ranks in the group."""
        pass

    @property
    def is_root(self) -> bool:
        return self.rank == ROOT

    @abstractmethod
    def send(self, obj: Any, dest: int, tag: int = 0) -> None:
        """Send a picklable object to another rank."""
        pass

    def isend(self, obj: Any, dest: int, tag: int = 0) -> Request:
        """Start a send and return a request to wait on."""
        self.send(obj, dest, tag)
        return Request()

    @abstractmethod
    def recv(self, source: int, tag: int = 0) -> Any:
        """Block until a message from source arrives."""
        pass

    @abstractmethod
    def bcast(self, obj: Any, root: int = ROOT) -> Any:
        """Broadcast obj from root; every rank returns the root's object."""
        pass

    @abstractmethod
    def gather(self, obj: Any, root: int = ROOT) -> Optional[List[Any]]:
        """Collect one object per rank on root, ordered by rank; others get None."""
        pass

    @abstractmethod
    def allreduce(self, obj: Any, op: Callable[[Any, Any], Any]) -> Any:
        """Combine one object per rank with op; every rank returns the same result."""
        pass

    def barrier(self) -> None:
        """Block until every rank has reached the barrier."""
        self.allreduce(None, lambda a, b: None)

    @abstractmethod
    def abort(self, errorcode: int = 1) -> None:
        """Tear down the whole group after a fatal error."""
        pass

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if exc_type is not None and not issubclass(exc_type, (SystemExit, KeyboardInterrupt)):
            logger.error(f"Rank {self.rank} aborting worker group: {exc_value}")
            self.abort()
        self.close()
        return False


class SerialCommunicator(Communicator):
    """Communicator for a group of one rank."""

    def __init__(self):
        self._mailbox: Dict[int, deque] = {}

    @property
    def rank(self) -> int:
        return ROOT

    @property
    def size(self) -> int:
        return 1

    def _check_peer(self, peer: int):
        if peer != ROOT:
            raise ValueError(f"Rank {peer} does not exist in a serial worker group")

    def send(self, obj, dest, tag=0):
        self._check_peer(dest)
        self._mailbox.setdefault(tag, deque()).append(obj)

    def recv(self, source, tag=0):
        self._check_peer(source)
        queue = self._mailbox.get(tag)
        if not queue:
            raise CommunicationError(f"No pending message with tag {tag}; receive would block forever")
        return queue.popleft()

    def bcast(self, obj, root=ROOT):
        self._check_peer(root)
        return obj

    def gather(self, obj, root=ROOT):
        self._check_peer(root)
        return [obj]

    def allreduce(self, obj, op):
        return obj

    def abort(self, errorcode=1):
        logger.debug(f"Serial worker group aborted with code {errorcode}")


class PipeCommunicator(Communicator):
    """
    Communicator over a full mesh of multiprocessing pipes.

    Each rank owns one duplex connection per peer. Messages on a connection
    are delivered in order, which together with the tags below is enough to
    detect collectives called out of step.
    """

    def __init__(self, rank: int, size: int, connections: Dict[int, Connection]):
        """
        Initialize the communicator of one rank.

        Args:
            rank: Rank of this process
            size: Number of ranks
            connections: Mapping from peer rank to the connection shared with it
        """
        if set(connections) != set(range(size)) - {rank}:
            raise ValueError(f"Rank {rank} needs a connection to each of its {size - 1} peers")
        self._rank = rank
        self._size = size
        self._connections = connections
        self._sequence = 0
        self._closed = False

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def size(self) -> int:
        return self._size

    def _next_tag(self, operation: str) -> Tuple[str, int]:
        self._sequence += 1
        return (operation, self._sequence)

    def _connection(self, peer: int) -> Connection:
        if self._closed:
            raise WorkerAbortedError(f"Rank {self._rank} has already left the worker group")
        try:
            return self._connections[peer]
        except KeyError:
            raise ValueError(f"Rank {peer} is not a peer of rank {self._rank} (group size {self._size})")

    def _send_tagged(self, dest: int, tag, obj) -> None:
        try:
            self._connection(dest).send((tag, obj))
        except (BrokenPipeError, ConnectionResetError) as e:
            raise WorkerAbortedError(f"Rank {dest} is gone: {e}")

    def _recv_tagged(self, source: int, tag) -> Any:
        try:
            received_tag, obj = self._connection(source).recv()
        except (EOFError, ConnectionResetError):
            raise WorkerAbortedError(f"Rank {source} closed its channel to rank {self._rank}")
        if received_tag != tag:
            raise CollectiveMismatchError(
                f"Rank {self._rank} expected {tag} from rank {source} but received {received_tag}"
            )
        return obj

    def send(self, obj, dest, tag=0):
        self._send_tagged(dest, ("send", tag), obj)

    def recv(self, source, tag=0):
        return self._recv_tagged(source, ("send", tag))

    def bcast(self, obj, root=ROOT):
        tag = self._next_tag("bcast")
        if self._rank == root:
            for peer in range(self._size):
                if peer != root:
                    self._send_tagged(peer, tag, obj)
            return obj
        return self._recv_tagged(root, tag)

    def gather(self, obj, root=ROOT):
        tag = self._next_tag("gather")
        if self._rank != root:
            self._send_tagged(root, tag, obj)
            return None
        return [obj if peer == root else self._recv_tagged(peer, tag)
                for peer in range(self._size)]

    def allreduce(self, obj, op):
        tag = self._next_tag("allreduce")
        if self._rank != ROOT:
            self._send_tagged(ROOT, tag, obj)
            return self._recv_tagged(ROOT, tag)

        values = [obj if peer == ROOT else self._recv_tagged(peer, tag)
                  for peer in range(self._size)]
        # Reduce in rank order so the result never depends on arrival order
        result = functools.reduce(op, values)
        for peer in range(1, self._size):
            self._send_tagged(peer, tag, result)
        return result

    def abort(self, errorcode=1):
        # Peers blocked on this rank see EOF and raise WorkerAbortedError
        self.close()

    def close(self):
        if self._closed:
            return
        self._closed = True
        for connection in self._connections.values():
            connection.close()


class MPICommunicator(Communicator):
    """Communicator backed by an mpi4py communicator (COMM_WORLD by default)."""

    def __init__(self, comm=None):
        try:
            from mpi4py import MPI
        except ImportError:
            raise ImportError(
                "mpi4py is required for the MPI backend. "
                "Install it with: pip install 'distupgma[mpi]'"
            )
        self._comm = comm if comm is not None else MPI.COMM_WORLD

    @property
    def rank(self) -> int:
        return self._comm.Get_rank()

    @property
    def size(self) -> int:
        return self._comm.Get_size()

    def send(self, obj, dest, tag=0):
        self._comm.send(obj, dest=dest, tag=tag)

    def isend(self, obj, dest, tag=0):
        return self._comm.isend(obj, dest=dest, tag=tag)

    def recv(self, source, tag=0):
        return self._comm.recv(source=source, tag=tag)

    def bcast(self, obj, root=ROOT):
        return self._comm.bcast(obj, root=root)

    def gather(self, obj, root=ROOT):
        return self._comm.gather(obj, root=root)

    def allreduce(self, obj, op):
        # allgather + local reduce keeps arbitrary Python ops deterministic
        values = self._comm.allgather(obj)
        return functools.reduce(op, values)

    def barrier(self):
        self._comm.Barrier()

    def abort(self, errorcode=1):
        self._comm.Abort(errorcode)


def _configure_worker_logging(log_level: int):
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(processName)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def _worker_main(rank: int, size: int,
                 mesh: Dict[Tuple[int, int], Connection],
                 result_writers: List[Connection],
                 target: Callable, args: tuple,
                 log_level: Optional[int]):
    """Entry point of one worker process."""
    if log_level is not None:
        _configure_worker_logging(log_level)

    # Drop every inherited channel end owned by another rank so that EOF on
    # a peer's connection reliably means the peer has gone away
    connections = {}
    for (owner, peer), connection in mesh.items():
        if owner == rank:
            connections[peer] = connection
        else:
            connection.close()
    result_writer = result_writers[rank]
    for other, writer in enumerate(result_writers):
        if other != rank:
            writer.close()

    comm = PipeCommunicator(rank, size, connections)
    try:
        result = target(comm, *args)
    except Exception as e:
        logger.debug(f"Rank {rank} failed", exc_info=True)
        # Report before aborting so the root cause reaches the parent first
        result_writer.send(("error", f"{type(e).__name__}: {e}", isinstance(e, WorkerAbortedError)))
        result_writer.close()
        comm.abort()
        sys.exit(1)
    else:
        result_writer.send(("ok", result, False))
        result_writer.close()
    finally:
        comm.close()


class WorkerGroup:
    """
    A fixed group of worker processes running the same program on every rank.

    The group is a scoped resource: use it as a context manager so that
    processes and pipes are released on every exit path, including failures.

    Example:
        with WorkerGroup(4) as group:
            results = group.run(program, config)
    """

    def __init__(self, num_workers: int,
                 start_method: Optional[str] = None,
                 log_level: Optional[int] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize the worker group.

        Args:
            num_workers: Number of ranks (processes) to start
            start_method: multiprocessing start method; None uses the platform default
            log_level: Logging level configured in each worker; None leaves logging alone
            logger: Optional logger instance; uses the module logger if None
        """
        if num_workers < 1:
            raise ValueError(f"Worker count must be positive, got {num_workers}")
        self.num_workers = num_workers
        self.start_method = start_method
        self.log_level = log_level
        self.logger = logger or logging.getLogger(__name__)
        self._processes: List[multiprocessing.Process] = []
        self._readers: List[Connection] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.shutdown()
        return False

    def run(self, target: Callable, *args) -> List[Any]:
        """
        Run target(comm, *args) on every rank and wait for all of them.

        Args:
            target: Picklable module-level function taking a Communicator first
            *args: Picklable arguments passed to every rank

        Returns:
            List of per-rank return values, indexed by rank

        Raises:
            WorkerGroupError: If any rank raises or dies; the remaining ranks
                are terminated first
        """
        if self._processes:
            raise RuntimeError("Worker group is already running")

        ctx = multiprocessing.get_context(self.start_method)
        n = self.num_workers

        mesh = {}
        for a in range(n):
            for b in range(a + 1, n):
                end_a, end_b = ctx.Pipe(duplex=True)
                mesh[(a, b)] = end_a
                mesh[(b, a)] = end_b

        writers = []
        for _ in range(n):
            reader, writer = ctx.Pipe(duplex=False)
            self._readers.append(reader)
            writers.append(writer)

        self.logger.debug(f"Starting worker group with {n} ranks")
        try:
            for rank in range(n):
                process = ctx.Process(
                    target=_worker_main,
                    name=f"rank-{rank}",
                    args=(rank, n, mesh, writers, target, args, self.log_level),
                )
                process.start()
                self._processes.append(process)
        finally:
            # The parent keeps only the result readers
            for connection in mesh.values():
                connection.close()
            for writer in writers:
                writer.close()

        return self._collect()

    def _collect(self) -> List[Any]:
        results: List[Any] = [None] * self.num_workers
        pending = dict(enumerate(self._readers))

        while pending:
            wait(list(pending.values()) + [self._processes[rank].sentinel for rank in pending])

            failures = []
            for rank in sorted(pending):
                reader = pending[rank]
                process = self._processes[rank]
                if reader.poll():
                    try:
                        status, payload, aborted = reader.recv()
                    except EOFError:
                        process.join()
                        status, payload, aborted = (
                            "error", f"exited without reporting (exit code {process.exitcode})", False)
                    del pending[rank]
                    if status == "ok":
                        results[rank] = payload
                    else:
                        failures.append((rank, payload, aborted))
                elif not process.is_alive():
                    del pending[rank]
                    failures.append((rank, f"exited with code {process.exitcode}", False))

            if failures:
                # Ranks that only saw a peer disappear are symptoms, not causes
                rank, message, _ = next((f for f in failures if not f[2]), failures[0])
                self.logger.error(f"Rank {rank} failed, aborting all workers: {message}")
                self.shutdown()
                raise WorkerGroupError(rank, message)

        for process in self._processes:
            process.join()
        self.logger.debug(f"Worker group with {self.num_workers} ranks finished")
        return results

    def shutdown(self):
        """Terminate any live worker and release all pipes."""
        for process in self._processes:
            if process.is_alive():
                process.terminate()
        for process in self._processes:
            process.join()
        for reader in self._readers:
            reader.close()
        self._processes = []
        self._readers = []


def run_serial(target: Callable, *args) -> List[Any]:
    """Run target on a single in-process rank, mirroring WorkerGroup.run."""
    with SerialCommunicator() as comm:
        return [target(comm, *args)]
