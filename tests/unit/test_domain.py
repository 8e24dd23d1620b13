"""Unit tests for domain models.

Tests readings, manifests, sync metadata, drift models and unified rows.
"""

from datetime import datetime, timezone

from pydantic import TypeAdapter, ValidationError
import pytest

from seasync.domain import (
    CSV_HEADER,
    WIDE_COLUMNS,
    ChunkMetadata,
    ConstantDrift,
    DriftModel,
    LinearDrift,
    MarkerType,
    Reading,
    SensorInfo,
    SensorRole,
    SensorValues,
    SessionManifest,
    SyncMetadata,
    WideRow,
)

pytestmark = pytest.mark.unit

T0 = datetime(2025, 11, 18, 12, 0, 1, 123456, tzinfo=timezone.utc)


class TestReading:
    """Test Reading validation and CSV rendering."""

    def test_Should_RenderSixColumns_When_DataReading(self):
        """Should render the six schema columns in order."""
        reading = Reading(time=T0, sensor_id="SN12345", mode="freerun", value=123.456789, temp_c=21.34, vin=12.345)

        assert CSV_HEADER == "timestamp,sensor_id,mode,value,TempC,Vin"
        assert reading.to_csv_fields() == [
            "2025-11-18T12:00:01.123456+00:00",
            "SN12345",
            "freerun",
            "123.456789",
            "21.34",
            "12.345",
        ]

    def test_Should_LeaveOptionalColumnsEmpty_When_NotMeasured(self):
        """Should render missing TempC/Vin as empty strings."""
        reading = Reading(time=T0, sensor_id="SN1", mode="polled", value=1.0)

        assert reading.to_csv_fields()[4:] == ["", ""]

    def test_Should_CarrySyncIdAsValue_When_Marker(self):
        """Should put the sync id in the value column of a marker row."""
        marker = Reading.marker(MarkerType.START, "SN1", "abc123", T0)

        assert marker.is_marker
        assert marker.mode == "SYNC_START"
        assert marker.to_csv_fields()[2:4] == ["SYNC_START", "abc123"]

    def test_Should_RejectMarker_When_SyncIdMissing(self):
        """Should require a sync id on marker readings."""
        with pytest.raises(ValidationError):
            Reading(time=T0, sensor_id="SN1", mode="SYNC_STOP")

    def test_Should_RejectDataReading_When_ValueMissing(self):
        """Should require a value on data readings."""
        with pytest.raises(ValidationError):
            Reading(time=T0, sensor_id="SN1", mode="freerun")

    def test_Should_BeImmutable_When_Created(self):
        """Should not allow mutation of a reading."""
        reading = Reading(time=T0, sensor_id="SN1", mode="freerun", value=1.0)

        with pytest.raises(ValidationError):
            reading.value = 2.0


class TestSensorRole:
    """Test role naming conventions."""

    def test_Should_UseDirectoryPrefixes_When_RoleGiven(self):
        assert SensorRole.IN_WATER.directory_prefix == "in-water"
        assert SensorRole.SURFACE.directory_prefix == "surface"

    def test_Should_UseColumnPrefixes_When_RoleGiven(self):
        assert SensorRole.IN_WATER.column_prefix == "inwater"
        assert SensorRole.SURFACE.column_prefix == "surface"


class TestSessionManifest:
    """Test manifest bookkeeping."""

    @staticmethod
    def _chunk(index: int, rows: int = 10, size: int = 100) -> ChunkMetadata:
        return ChunkMetadata(index=index, name=f"chunk_{index:05d}.csv", rows=rows, sha256="0" * 64, size_bytes=size, timestamp=T0)

    def test_Should_AdvanceTotals_When_ChunkAppended(self):
        """Should add chunk rows and bytes to the running totals."""
        manifest = SessionManifest(session_id="s1", mission="m", started_at=T0)
        manifest.append_chunk(self._chunk(0, rows=10, size=100))
        manifest.append_chunk(self._chunk(1, rows=5, size=60))

        assert manifest.total_rows == 15
        assert manifest.total_bytes == 160
        assert manifest.next_chunk_index == 2
        assert manifest.last_chunk_index == 1

    def test_Should_RejectDuplicate_When_IndexAlreadyRecorded(self):
        """Should never record the same chunk index twice."""
        manifest = SessionManifest(session_id="s1", mission="m", started_at=T0)
        manifest.append_chunk(self._chunk(0))

        with pytest.raises(ValueError):
            manifest.append_chunk(self._chunk(0))

    def test_Should_ReportMinusOne_When_NoChunks(self):
        manifest = SessionManifest(session_id="s1", mission="m", started_at=T0)

        assert manifest.last_chunk_index == -1


class TestSyncMetadata:
    """Test session pair metadata helpers."""

    def test_Should_StartWithBothSensorsNull_When_Created(self):
        metadata = SyncMetadata(mission="m", unified_session_timestamp="2025-11-18T12-00-00-000Z")

        assert metadata.sensors == {SensorRole.IN_WATER: None, SensorRole.SURFACE: None}
        assert metadata.registered_roles() == []
        assert not metadata.all_registered_complete()

    def test_Should_BeReady_When_OnlyRegisteredSensorComplete(self):
        """Should treat a single registered, complete sensor as ready."""
        metadata = SyncMetadata(mission="m", unified_session_timestamp="ts")
        metadata.sensors = {SensorRole.IN_WATER: None, SensorRole.SURFACE: SensorInfo(complete=True)}

        assert metadata.all_registered_complete()
        assert not metadata.both_sensors_complete()

    def test_Should_NotBeReady_When_OneOfTwoIncomplete(self):
        metadata = SyncMetadata(mission="m", unified_session_timestamp="ts")
        metadata.sensors = {
            SensorRole.IN_WATER: SensorInfo(complete=False),
            SensorRole.SURFACE: SensorInfo(complete=True),
        }

        assert not metadata.all_registered_complete()

    def test_Should_SerializeRoleKeys_When_Dumped(self):
        """Should use in_water/surface as JSON keys."""
        payload = SyncMetadata(mission="m", unified_session_timestamp="ts").model_dump(mode="json")

        assert set(payload["sensors"]) == {"in_water", "surface"}


class TestDriftModels:
    """Test the tagged drift model union."""

    def test_Should_ParseConstant_When_TypeConstant(self):
        model = TypeAdapter(DriftModel).validate_python({"type": "constant", "offset_ms": 12.5})

        assert isinstance(model, ConstantDrift)
        assert model.offset_ms == 12.5

    def test_Should_ParseLinear_When_TypeLinear(self):
        model = TypeAdapter(DriftModel).validate_python(
            {
                "type": "linear",
                "start_offset_ms": 0.0,
                "end_offset_ms": 50.0,
                "drift_rate_per_ms": 0.0005,
                "reference_time_ms": 0.0,
            }
        )

        assert isinstance(model, LinearDrift)
        assert model.drift_rate_ms_per_min == pytest.approx(30.0)

    def test_Should_Reject_When_TypeUnknown(self):
        with pytest.raises(ValidationError):
            TypeAdapter(DriftModel).validate_python({"type": "cubic", "offset_ms": 1.0})


class TestWideRow:
    """Test unified row rendering."""

    def test_Should_HaveElevenColumns_When_HeaderBuilt(self):
        assert WIDE_COLUMNS == [
            "timestamp",
            "inwater_sensor_id",
            "inwater_mode",
            "inwater_value",
            "inwater_TempC",
            "inwater_Vin",
            "surface_sensor_id",
            "surface_mode",
            "surface_value",
            "surface_TempC",
            "surface_Vin",
        ]

    def test_Should_LeaveSensorColumnsEmpty_When_SensorAbsent(self):
        """Should fill all five columns of a missing sensor with empty strings."""
        row = WideRow(timestamp=T0, surface=SensorValues(sensor_id="SN2", mode="freerun", value="1.5", temp_c="20.1"))

        fields = row.to_csv_fields()

        assert fields[1:6] == ["", "", "", "", ""]
        assert fields[6:] == ["SN2", "freerun", "1.5", "20.1", ""]
        assert not row.has_both
