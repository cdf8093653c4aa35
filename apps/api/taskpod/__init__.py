"""TaskPod: run registered shell tasks in single-use Kubernetes pods."""

__version__ = "0.1.0"
