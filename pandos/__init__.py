"""A model of a small teaching kernel: processes, semaphores, scheduling, syscalls and interrupts."""

__version__ = "0.1.0"