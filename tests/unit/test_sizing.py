"""Unit tests for the sizing engine."""

import pytest

from pgsizer.core.exceptions import ValidationError
from pgsizer.services.profiles import (
    STORAGE_PROFILES,
    WORKLOAD_PROFILES,
    StorageType,
    WorkloadProfile,
    WorkloadType,
)
from pgsizer.services.sizing import (
    ConfigurationSet,
    Parameter,
    ParameterKind,
    ResourceObservation,
    assemble_configuration,
    calculate_effective_cache_size,
    calculate_maintenance_work_mem,
    calculate_max_connections,
    calculate_shared_buffers,
    calculate_wal_buffers,
    calculate_work_mem,
    calculate_workers,
    compute_configuration,
    work_mem_cap,
)


WEB = WORKLOAD_PROFILES[WorkloadType.WEB]
OLTP = WORKLOAD_PROFILES[WorkloadType.OLTP]
DW = WORKLOAD_PROFILES[WorkloadType.DW]
MIXED = WORKLOAD_PROFILES[WorkloadType.MIXED]
SSD = STORAGE_PROFILES[StorageType.SSD]
HDD = STORAGE_PROFILES[StorageType.HDD]


class TestSharedBuffers:
    """Tests for shared_buffers sizing."""

    def test_small_host_quarter_of_ram(self):
        """512MB RAM gives 128MB (25% tier, above the floor)."""
        assert calculate_shared_buffers(512) == 128

    def test_middle_tier_twenty_percent(self):
        """16GB RAM gives floor(16384 * 0.20)."""
        assert calculate_shared_buffers(16384) == 3276

    def test_large_host_capped(self):
        """256GB RAM would give 39321MB at 15% and is capped at 32GB."""
        assert calculate_shared_buffers(262144) == 32768

    def test_floor_applies_on_tiny_hosts(self):
        """Values below 64MB are raised to the floor."""
        assert calculate_shared_buffers(100) == 64
        assert calculate_shared_buffers(1) == 64

    def test_tier_boundaries(self):
        """Tier thresholds are inclusive on the upper bound."""
        assert calculate_shared_buffers(1024) == 256
        assert calculate_shared_buffers(8192) == 2048
        assert calculate_shared_buffers(8193) == 1638
        assert calculate_shared_buffers(32768) == 6553
        assert calculate_shared_buffers(32769) == 4915


class TestMaxConnections:
    """Tests for connection scaling."""

    def test_small_host_halves_base(self):
        """1GB mixed host gets 50% of 120."""
        assert calculate_max_connections(1024, MIXED) == 60

    @pytest.mark.parametrize("ram_mb,expected", [
        (1024, 60),
        (2048, 84),
        (3072, 84),
        (4096, 102),
        (6144, 102),
        (8192, 120),
        (65536, 120),
    ])
    def test_mixed_tiers(self, ram_mb, expected):
        """Mixed workload scales 50/70/85/100% by RAM tier."""
        assert calculate_max_connections(ram_mb, MIXED) == expected

    def test_full_base_on_large_hosts(self):
        """No scaling at 8GB and above."""
        assert calculate_max_connections(16384, WEB) == 200
        assert calculate_max_connections(16384, OLTP) == 300
        assert calculate_max_connections(16384, DW) == 100

    def test_minimum_twenty(self):
        """A small base scaled down never drops below 20."""
        tiny = WorkloadProfile(WorkloadType.DW, 30, 4096, 16384)
        assert calculate_max_connections(1024, tiny) == 20


class TestEffectiveCacheSize:
    """Tests for effective_cache_size sizing."""

    def test_sixteen_gb(self):
        """16GB: 70% of (16384 - 3276 - 3276)."""
        assert calculate_effective_cache_size(16384, 3276) == 6882

    def test_minimum_twice_shared_buffers(self):
        """4GB: computed 1577MB is raised to 2 x 1024."""
        assert calculate_effective_cache_size(4096, 1024) == 2048

    def test_negative_available_clamped(self):
        """Reserves larger than RAM fall back to the 2x shared_buffers minimum."""
        assert calculate_effective_cache_size(512, 128) == 256

    def test_os_reserve_floor(self):
        """Below 2560MB the OS reserve is the 512MB floor."""
        # avail = 2048 - 512 - 512 = 1024, 70% = 716, min 1024
        assert calculate_effective_cache_size(2048, 512) == 1024


class TestMaintenanceWorkMem:
    """Tests for maintenance_work_mem sizing."""

    def test_sixteenth_of_ram(self):
        """Non-dw workloads use 1/16 of RAM."""
        assert calculate_maintenance_work_mem(16384, MIXED) == 1024
        assert calculate_maintenance_work_mem(16384, OLTP) == 1024

    def test_dw_eighth_of_ram(self):
        """dw uses 1/8 of RAM."""
        assert calculate_maintenance_work_mem(16384, DW) == 2048

    def test_floor(self):
        """Small hosts get at least 32MB."""
        assert calculate_maintenance_work_mem(256, MIXED) == 32

    def test_cap(self):
        """Large hosts are capped at 2GB."""
        assert calculate_maintenance_work_mem(65536, DW) == 2048
        assert calculate_maintenance_work_mem(65536, WEB) == 2048


class TestWorkMem:
    """Tests for work_mem allocation."""

    def test_documented_mixed_case(self):
        """4GB, 84 connections, 1GB buffers: 1720 / 336 = 5."""
        assert calculate_work_mem(4096, 84, 1024, MIXED) == 5

    def test_eight_gb_mixed(self):
        """(8192 - 2048 - 1020 - 512) / 408 = 11."""
        assert calculate_work_mem(8192, 102, 2048, MIXED) == 11

    def test_capped_by_ram_tier(self):
        """A single connection on 2GB would get 253MB; mixed cap there is 64."""
        assert calculate_work_mem(2048, 1, 512, MIXED) == 64

    def test_oltp_large_host(self):
        """(32768 - 6553 - 3000 - 512) / 1200 = 18."""
        assert calculate_work_mem(32768, 300, 6553, OLTP) == 18

    def test_pool_floor(self):
        """A negative pool is raised to 256MB before division."""
        assert calculate_work_mem(512, 60, 128, MIXED) == 1

    def test_minimum_one(self):
        """Division results below 1 are raised to 1."""
        assert calculate_work_mem(512, 300, 128, OLTP) == 1

    def test_web_and_oltp_cap_fixed(self):
        """web/oltp stay at 32MB regardless of RAM."""
        assert calculate_work_mem(65536, 20, 1024, WEB) == 32
        assert calculate_work_mem(65536, 20, 1024, OLTP) == 32

    def test_dw_cap_on_large_host(self):
        """dw gets up to 256MB at 32GB and above."""
        assert calculate_work_mem(65536, 20, 1024, DW) == 256

    @pytest.mark.parametrize("ram_mb,expected", [
        (1024, 32),
        (2048, 64),
        (8191, 64),
        (8192, 128),
        (32768, 256),
    ])
    def test_analytic_cap_tiers(self, ram_mb, expected):
        """dw and mixed caps rise with RAM."""
        assert work_mem_cap(ram_mb, DW) == expected
        assert work_mem_cap(ram_mb, MIXED) == expected


class TestWalBuffers:
    """Tests for wal_buffers sizing."""

    def test_capped(self):
        """1GB buffers gives 30MB, capped to 16."""
        assert calculate_wal_buffers(1024) == 16

    def test_fifteen_rounds_up(self):
        """512MB buffers gives 15MB, which rounds up to 16."""
        assert calculate_wal_buffers(512) == 16

    def test_fourteen_unchanged(self):
        """14MB is not strictly between 14 and 16."""
        assert calculate_wal_buffers(467) == 14

    @pytest.mark.parametrize("shared_buffers_mb,expected", [
        (32, 1),
        (64, 1),
        (128, 3),
        (256, 7),
    ])
    def test_small_values(self, shared_buffers_mb, expected):
        """3% of shared_buffers, at least 1MB."""
        assert calculate_wal_buffers(shared_buffers_mb) == expected


class TestWorkers:
    """Tests for CPU-derived worker counts."""

    def test_forty_eight_cores(self):
        """48 cores: 12 I/O workers, 72 worker processes capped to 64."""
        workers = calculate_workers(48)
        assert workers.io_workers == 12
        assert workers.worker_processes == 64
        assert workers.parallel_workers == 48
        assert workers.parallel_workers_per_gather == 24

    def test_single_core(self):
        """One core still gets the minimums and no parallel gather."""
        workers = calculate_workers(1)
        assert workers.io_workers == 1
        assert workers.worker_processes == 2
        assert workers.parallel_workers == 1
        assert workers.parallel_workers_per_gather == 0

    def test_four_cores(self):
        """Four cores enable parallel gather."""
        workers = calculate_workers(4)
        assert workers.io_workers == 1
        assert workers.worker_processes == 6
        assert workers.parallel_workers == 4
        assert workers.parallel_workers_per_gather == 2

    def test_many_cores_capped(self):
        """All counts stay within max_worker_processes."""
        workers = calculate_workers(300)
        assert workers.io_workers == 64
        assert workers.worker_processes == 64
        assert workers.parallel_workers == 64
        assert workers.parallel_workers_per_gather == 64


class TestAssembly:
    """Tests for the assembled ConfigurationSet."""

    EXPECTED_ORDER = [
        "shared_buffers",
        "effective_cache_size",
        "maintenance_work_mem",
        "work_mem",
        "wal_buffers",
        "min_wal_size",
        "max_wal_size",
        "max_connections",
        "random_page_cost",
        "effective_io_concurrency",
        "maintenance_io_concurrency",
        "io_workers",
        "max_worker_processes",
        "max_parallel_workers",
        "max_parallel_workers_per_gather",
        "shared_preload_libraries",
    ]

    def test_four_gb_mixed_ssd(self):
        """Full set for 4GB, 4 cores, mixed on SSD."""
        config = compute_configuration(4096, 4, "mixed", "ssd")

        assert dict(config) == {
            "shared_buffers": 1024,
            "effective_cache_size": 2048,
            "maintenance_work_mem": 256,
            "work_mem": 3,
            "wal_buffers": 16,
            "min_wal_size": 1024,
            "max_wal_size": 4096,
            "max_connections": 102,
            "random_page_cost": 1.1,
            "effective_io_concurrency": 200,
            "maintenance_io_concurrency": 20,
            "io_workers": 1,
            "max_worker_processes": 6,
            "max_parallel_workers": 4,
            "max_parallel_workers_per_gather": 2,
            "shared_preload_libraries": "pg_stat_statements,auto_explain,pg_cron,pgaudit",
        }

    def test_parameter_order(self):
        """Parameters come out in a fixed order."""
        config = compute_configuration(4096, 4)
        assert list(config) == self.EXPECTED_ORDER
        assert len(config) == len(self.EXPECTED_ORDER)

    def test_settings_render_units(self):
        """Memory values get an MB suffix, counts and decimals are bare."""
        settings = compute_configuration(4096, 4, storage_type="hdd").settings()
        assert settings["shared_buffers"] == "1024MB"
        assert settings["max_connections"] == "102"
        assert settings["random_page_cost"] == "4.0"

    def test_profile_values_flow_through(self):
        """WAL sizes come from the workload, I/O costs from the storage."""
        config = compute_configuration(16384, 8, "dw", "hdd")
        assert config["min_wal_size"] == 4096
        assert config["max_wal_size"] == 16384
        assert config["random_page_cost"] == 4.0
        assert config["effective_io_concurrency"] == 2
        assert config["maintenance_io_concurrency"] == 10

    def test_unknown_profiles_fall_back(self):
        """Unknown names use mixed and ssd."""
        config = compute_configuration(4096, 4, "bogus", "nvme")
        assert config.workload == MIXED
        assert config.storage == SSD
        assert config == compute_configuration(4096, 4)

    def test_profile_names_case_insensitive(self):
        """Names are matched after lowercasing and stripping."""
        config = compute_configuration(4096, 4, " OLTP ", "HDD")
        assert config.workload == OLTP
        assert config.storage == HDD

    def test_strict_rejects_unknown(self):
        """The strict policy raises instead of substituting."""
        with pytest.raises(ValidationError, match="Unknown workload profile"):
            compute_configuration(4096, 4, "bogus", strict=True)
        with pytest.raises(ValidationError, match="Unknown storage profile"):
            compute_configuration(4096, 4, storage_type="nvme", strict=True)

    def test_custom_libraries_replace_default(self):
        """A caller-supplied list replaces the default list."""
        config = compute_configuration(4096, 4, shared_preload_libraries=["timescaledb"])
        assert config["shared_preload_libraries"] == "timescaledb"

    def test_empty_library_list(self):
        """An empty list renders as an empty quoted string."""
        config = compute_configuration(4096, 4, shared_preload_libraries=[])
        param = config.parameter("shared_preload_libraries")
        assert param.value == ""
        assert param.conf_value == "''"

    def test_observation_sources_do_not_affect_equality(self):
        """Sources are informational only."""
        detected = ResourceObservation(4096, 4, ram_source="cgroup-v2", cpu_source="nproc")
        manual = ResourceObservation(4096, 4)
        assert assemble_configuration(detected, MIXED, SSD) == assemble_configuration(
            manual, MIXED, SSD
        )

    def test_configuration_is_immutable(self):
        """The set cannot be modified after construction."""
        config = compute_configuration(4096, 4)
        with pytest.raises(TypeError):
            config["work_mem"] = 64  # type: ignore[index]
        with pytest.raises(AttributeError):
            config.parameters = ()  # type: ignore[misc]


class TestParameter:
    """Tests for Parameter rendering."""

    def test_memory_setting(self):
        param = Parameter("work_mem", 64, ParameterKind.MEMORY)
        assert param.setting == "64MB"
        assert param.conf_value == "64MB"

    def test_string_quoted_in_conf(self):
        param = Parameter("shared_preload_libraries", "a,b", ParameterKind.STRING)
        assert param.setting == "a,b"
        assert param.conf_value == "'a,b'"

    def test_quote_escaping(self):
        param = Parameter("application_name", "it's", ParameterKind.STRING)
        assert param.conf_value == "'it''s'"

    def test_requires_restart(self):
        assert Parameter("shared_buffers", 128, ParameterKind.MEMORY).requires_restart
        assert not Parameter("work_mem", 4, ParameterKind.MEMORY).requires_restart

    def test_reason_ignored_in_equality(self):
        a = Parameter("work_mem", 4, ParameterKind.MEMORY, reason="one")
        b = Parameter("work_mem", 4, ParameterKind.MEMORY, reason="two")
        assert a == b


class TestInvariants:
    """Properties that hold for all inputs."""

    RAM_GRID = [1, 64, 256, 511, 512, 1000, 1024, 2047, 2048, 4096, 8192,
                8193, 16384, 32768, 32769, 65536, 262144, 1048576]
    CPU_GRID = [1, 2, 3, 4, 7, 8, 16, 42, 48, 64, 256]

    @pytest.mark.parametrize("ram_mb", RAM_GRID)
    @pytest.mark.parametrize("workload", ["web", "oltp", "dw", "mixed"])
    def test_bounds(self, ram_mb, workload):
        """Every memory output stays inside its floor and cap."""
        config = compute_configuration(ram_mb, 4, workload)
        profile = WORKLOAD_PROFILES[WorkloadType(workload)]

        assert 64 <= config["shared_buffers"] <= 32768
        assert config["max_connections"] >= 20
        assert 32 <= config["maintenance_work_mem"] <= 2048
        assert 1 <= config["work_mem"] <= work_mem_cap(ram_mb, profile)
        assert 1 <= config["wal_buffers"] <= 16

    @pytest.mark.parametrize("cores", CPU_GRID)
    def test_worker_bounds(self, cores):
        """Worker counts stay inside their bounds."""
        config = compute_configuration(4096, cores)
        assert 1 <= config["io_workers"] <= 64
        assert 2 <= config["max_worker_processes"] <= 64
        assert config["max_parallel_workers"] <= config["max_worker_processes"]
        assert config["max_parallel_workers_per_gather"] <= config["max_parallel_workers"]

    @pytest.mark.parametrize("ram_mb", RAM_GRID)
    def test_cache_at_least_twice_buffers(self, ram_mb):
        """effective_cache_size >= 2 x shared_buffers."""
        config = compute_configuration(ram_mb, 2)
        assert config["effective_cache_size"] >= 2 * config["shared_buffers"]

    def test_deterministic(self):
        """Identical inputs give equal sets."""
        first = compute_configuration(12345, 6, "oltp", "san", ["pg_cron"])
        second = compute_configuration(12345, 6, "oltp", "san", ["pg_cron"])
        assert first == second
        assert list(first.items()) == list(second.items())

    @pytest.mark.parametrize("start,stop", [(1100, 8192), (8200, 32768), (32780, 65536)])
    def test_monotonic_within_tier(self, start, stop):
        """Increasing RAM inside a tier never lowers the main outputs."""
        previous = None
        for ram_mb in range(start, stop, 20):
            config = compute_configuration(ram_mb, 4)
            current = (
                config["shared_buffers"],
                config["max_connections"],
                config["effective_cache_size"],
            )
            if previous is not None:
                assert all(c >= p for c, p in zip(current, previous)), ram_mb
            previous = current

    def test_returns_configuration_set(self):
        assert isinstance(compute_configuration(4096, 4), ConfigurationSet)
