"""Python message types and transport for the Yellowstone Geyser stream.

``geyser_pb2`` holds protobuf-like dataclasses for the messages exchanged on
the ``Subscribe`` stream, ``geyser_codec`` encodes them with the real
``protobuf`` runtime and ``geyser_pb2_grpc`` opens the authenticated
bidirectional call over ``grpc.aio``.
"""
