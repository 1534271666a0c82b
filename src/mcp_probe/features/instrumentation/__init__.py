"""
Instrumentation du trafic protocolaire (journal circulaire pour la vue debug).
"""

from .ring_buffer import RingBuffer
from .recorder import ProtocolInstrumentation, InstrumentedTransport

__all__ = ["RingBuffer", "ProtocolInstrumentation", "InstrumentedTransport"]
