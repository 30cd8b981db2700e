"""Category catalog: which atrace categories the daemon can record.

The daemon reports its state as a binary TracingServiceState protobuf. Only
the path down to the atrace categories is described here; every other field
is skipped by the decoder as unknown.
"""

from dataclasses import dataclass
from functools import lru_cache

import structlog
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError

from trace_warden.process import ProcessController

log = structlog.get_logger()

# Categories backed by dedicated data sources rather than atrace.
SYNTHETIC_CATEGORIES = {
    "sys_stats": "meminfo, psi, and vmstats",
    "logs": "android logcat",
    "cpu": "callstack samples",
}

_PACKAGE = "perfetto.protos"
_OPTIONAL = descriptor_pb2.FieldDescriptorProto.LABEL_OPTIONAL
_REPEATED = descriptor_pb2.FieldDescriptorProto.LABEL_REPEATED
_STRING = descriptor_pb2.FieldDescriptorProto.TYPE_STRING
_INT32 = descriptor_pb2.FieldDescriptorProto.TYPE_INT32
_MESSAGE = descriptor_pb2.FieldDescriptorProto.TYPE_MESSAGE


def _add_field(
    msg: descriptor_pb2.DescriptorProto,
    *,
    name: str,
    number: int,
    label: int,
    field_type: int,
    type_name: str = "",
) -> None:
    field = msg.field.add()
    field.name = name
    field.number = number
    field.label = label
    field.type = field_type
    if type_name:
        field.type_name = f".{_PACKAGE}.{type_name}"


@dataclass(frozen=True)
class ServiceStateMessages:
    TracingServiceState: type
    AtraceCategory: type


@lru_cache(maxsize=1)
def _messages() -> ServiceStateMessages:
    fdp = descriptor_pb2.FileDescriptorProto()
    fdp.name = "trace_warden_service_state.proto"
    fdp.package = _PACKAGE
    fdp.syntax = "proto2"

    category = fdp.message_type.add()
    category.name = "AtraceCategory"
    _add_field(category, name="name", number=1, label=_OPTIONAL, field_type=_STRING)
    _add_field(category, name="description", number=2, label=_OPTIONAL, field_type=_STRING)

    ftrace = fdp.message_type.add()
    ftrace.name = "FtraceDescriptor"
    _add_field(
        ftrace,
        name="atrace_categories",
        number=1,
        label=_REPEATED,
        field_type=_MESSAGE,
        type_name="AtraceCategory",
    )

    descriptor = fdp.message_type.add()
    descriptor.name = "DataSourceDescriptor"
    _add_field(descriptor, name="name", number=1, label=_OPTIONAL, field_type=_STRING)
    _add_field(
        descriptor,
        name="ftrace_descriptor",
        number=8,
        label=_OPTIONAL,
        field_type=_MESSAGE,
        type_name="FtraceDescriptor",
    )

    data_source = fdp.message_type.add()
    data_source.name = "DataSource"
    _add_field(
        data_source,
        name="ds_descriptor",
        number=1,
        label=_OPTIONAL,
        field_type=_MESSAGE,
        type_name="DataSourceDescriptor",
    )
    _add_field(data_source, name="producer_id", number=2, label=_OPTIONAL, field_type=_INT32)

    state = fdp.message_type.add()
    state.name = "TracingServiceState"
    _add_field(
        state,
        name="data_sources",
        number=2,
        label=_REPEATED,
        field_type=_MESSAGE,
        type_name="DataSource",
    )

    pool = descriptor_pool.DescriptorPool()
    pool.Add(fdp)
    state_desc = pool.FindMessageTypeByName(f"{_PACKAGE}.TracingServiceState")
    category_desc = pool.FindMessageTypeByName(f"{_PACKAGE}.AtraceCategory")
    if hasattr(message_factory, "GetMessageClass"):
        state_cls = message_factory.GetMessageClass(state_desc)
        category_cls = message_factory.GetMessageClass(category_desc)
    else:
        factory = message_factory.MessageFactory(pool)
        state_cls = factory.GetPrototype(state_desc)
        category_cls = factory.GetPrototype(category_desc)
    return ServiceStateMessages(TracingServiceState=state_cls, AtraceCategory=category_cls)


def message_classes() -> ServiceStateMessages:
    return _messages()


def parse_service_state(payload: bytes) -> dict[str, str]:
    """Extract atrace categories from a serialized TracingServiceState.

    Raises:
        DecodeError: If the payload is not a valid message
    """
    state = _messages().TracingServiceState()
    state.ParseFromString(payload)

    categories: dict[str, str] = {}
    for data_source in state.data_sources:
        descriptor = data_source.ds_descriptor
        if not descriptor.HasField("ftrace_descriptor"):
            continue
        for category in descriptor.ftrace_descriptor.atrace_categories:
            categories[category.name] = category.description
    return categories


def list_categories(controller: ProcessController, command: str, timeout: float) -> dict[str, str]:
    """Query the daemon for its categories and merge in the synthetic ones.

    Never raises for daemon or decode problems: those are logged and the
    synthetic categories are still returned.

    Args:
        controller: Process controller used to run the query
        command: Raw service-state query command line
        timeout: Seconds to wait for the query

    Returns:
        Category name to description, sorted by name
    """
    categories: dict[str, str] = {}
    try:
        output = controller.run_and_capture(command, timeout)
    except OSError as e:
        log.error("category_query_failed", error=str(e))
        output = None

    if output is not None:
        if output.timed_out:
            log.error("category_query_timed_out", timeout=timeout)
        elif output.returncode != 0:
            log.error("category_query_exit", returncode=output.returncode)
        try:
            categories = parse_service_state(output.stdout)
        except DecodeError as e:
            log.error("category_query_decode_failed", error=str(e), size=len(output.stdout))

    categories.update(SYNTHETIC_CATEGORIES)
    return dict(sorted(categories.items()))
