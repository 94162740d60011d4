"""
File Puller

A durable work-queue consumer that pulls uploaded objects out of a NATS
JetStream object store into a local directory, with ack/nak/redelivery
semantics that never mark a file done before it is on disk.
"""

__version__ = "1.0.0"
