import dataclasses
import logging

import dacite
import pytest

from pace.collective import (
    Communicator,
    CommunicatorConfig,
    CreatesComm,
    CreatesCommSelector,
    LocalComm,
    MPICommConfig,
    NullGroupCommConfig,
    Registry,
)
from pace.collective.mpi import MPI


@CreatesCommSelector.register("single_rank")
@dataclasses.dataclass
class SingleRankCommConfig(CreatesComm):
    cleaned_up: bool = False

    def get_comm(self):
        assert not self.cleaned_up
        return LocalComm.create_group(1)[0]

    def cleanup(self, comm):
        self.cleaned_up = True


def test_default_comm_is_mpi():
    config = CommunicatorConfig.from_dict({})
    assert isinstance(config.comm, CreatesCommSelector)
    assert config.comm.type == "mpi"
    assert isinstance(config.comm.config, MPICommConfig)
    assert config.comm.config.color is None
    assert config.log_level == "info"
    assert config.log_rank is None


def test_select_null_group():
    config = CommunicatorConfig.from_dict(
        {"comm": {"type": "null"}, "log_level": "debug", "log_rank": 0}
    )
    assert isinstance(config.comm.config, NullGroupCommConfig)
    assert config.log_level == "debug"
    assert config.log_rank == 0


def test_mpi_split_color():
    config = CreatesCommSelector.from_dict({"type": "mpi", "config": {"color": 2}})
    assert config.config == MPICommConfig(color=2)


def test_from_dict_does_not_modify_input():
    config_dict = {"comm": {"type": "null"}}
    CommunicatorConfig.from_dict(config_dict)
    assert config_dict == {"comm": {"type": "null"}}


def test_unknown_comm_type():
    with pytest.raises(ValueError):
        CommunicatorConfig.from_dict({"comm": {"type": "carrier_pigeon"}})


def test_unexpected_key():
    with pytest.raises(dacite.UnexpectedDataError):
        CommunicatorConfig.from_dict({"log_levle": "debug"})


def test_invalid_log_level():
    with pytest.raises(ValueError):
        CommunicatorConfig.from_dict({"log_level": "verbose"})


def test_from_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("comm:\n  type: single_rank\nlog_level: warning\n")
    config = CommunicatorConfig.from_yaml(str(path))
    assert isinstance(config.comm.config, SingleRankCommConfig)
    assert config.log_level == "warning"


def test_from_empty_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert CommunicatorConfig.from_yaml(str(path)) == CommunicatorConfig.from_dict({})


def test_build_and_cleanup():
    config = CommunicatorConfig.from_dict({"comm": {"type": "single_rank"}})
    communicator = config.build()
    assert isinstance(communicator, Communicator)
    assert communicator.rank == 0
    assert communicator.size == 1
    assert communicator.sum(2.0) == 2.0
    config.cleanup(communicator)
    assert config.comm.config.cleaned_up


def test_build_configures_logging(caplog):
    config = CommunicatorConfig.from_dict(
        {"comm": {"type": "single_rank"}, "log_level": "debug"}
    )
    with caplog.at_level(logging.DEBUG, logger="pace.collective"):
        config.build()
    assert any("Communicator" in record.getMessage() for record in caplog.records)


@pytest.mark.skipif(MPI is None, reason="mpi4py is not available")
def test_build_null_group():
    communicator = CommunicatorConfig.from_dict({"comm": {"type": "null"}}).build()
    assert communicator.rank == -1
    assert communicator.size == 0
    assert communicator.broadcast(1.0) == 1.0
    assert communicator.comm.mpi_comm == MPI.COMM_NULL


def test_registry_default_type():
    registry = Registry(default_type="empty")

    @registry.register("empty")
    @dataclasses.dataclass
    class Empty:
        pass

    assert registry.from_dict({}) == Empty()
    assert registry.type_names == ["empty"]


def test_registry_requires_dataclass():
    registry = Registry()
    with pytest.raises(TypeError):

        @registry.register("plain")
        class Plain:
            pass


@pytest.fixture
def sized_registry():
    registry = Registry(default_type="fixed")

    @registry.register("fixed")
    @dataclasses.dataclass
    class FixedSize:
        size: int = 1

    return registry, FixedSize


def test_registry_resolve_returns_type_name(sized_registry):
    registry, FixedSize = sized_registry
    assert registry.resolve({"config": {"size": 4}}) == ("fixed", FixedSize(4))
    assert registry.resolve({"type": "fixed"}) == ("fixed", FixedSize(1))


def test_registry_does_not_modify_entry(sized_registry):
    registry, _ = sized_registry
    entry = {"type": "fixed"}
    registry.from_dict(entry)
    assert entry == {"type": "fixed"}


def test_registry_empty_config_from_yaml(sized_registry):
    registry, FixedSize = sized_registry
    assert registry.from_dict({"type": "fixed", "config": None}) == FixedSize(1)


def test_registry_unexpected_entry_key(sized_registry):
    registry, _ = sized_registry
    with pytest.raises(dacite.UnexpectedDataError):
        registry.from_dict({"type": "fixed", "confg": {"size": 2}})


def test_registry_unexpected_field(sized_registry):
    registry, _ = sized_registry
    with pytest.raises(dacite.UnexpectedDataError):
        registry.from_dict({"config": {"length": 2}})


def test_registry_without_default_needs_type():
    registry = Registry()
    with pytest.raises(ValueError):
        registry.from_dict({})
