"""
Pytest configuration and shared fixtures for the matching core tests.

Provides a small in-memory lookup store built from real ABR rows:
- 東京都 千代田区 紀尾井町 (block 1, residence 3)
- 東京都 港区 麻布十番一丁目
- 東京都 府中市 宮西町二丁目 / 町田市 森野一丁目, 森野二丁目
- 山形県 山形市 旅篭町二丁目
- 島根県 松江市 末次町 (parcel addressing)
- 京都府 八幡市 八幡園内
- 広島県 広島市 / 府中市
"""

import pytest

from abr_core.lookup_store import MemoryLookupStore
from abr_core.models import LookupLevel, LookupRecord
from abr_core.normalizer import expand_wildcards, numeric_key


def _pref(name, lg_code):
    return LookupRecord(
        level=LookupLevel.PREFECTURE,
        key=expand_wildcards(name),
        name=name,
        identifier=lg_code,
        lg_code=lg_code,
    )


def _city(prefecture, name, lg_code, lat=None, lon=None):
    return LookupRecord(
        level=LookupLevel.CITY,
        key=expand_wildcards(name),
        name=name,
        identifier=lg_code,
        lg_code=lg_code,
        lat=lat,
        lon=lon,
        scope={"prefecture": prefecture},
    )


def _town(lg_code, machiaza_id, oaza_cho, chome, rsdt_addr_flg, lat, lon):
    name = oaza_cho + chome
    return LookupRecord(
        level=LookupLevel.TOWN,
        key=expand_wildcards(name),
        name=name,
        identifier=machiaza_id,
        lg_code=lg_code,
        lat=lat,
        lon=lon,
        scope={"lg_code": lg_code},
        attributes={
            "oaza_cho": oaza_cho,
            "chome": chome,
            "koaza": "",
            "rsdt_addr_flg": rsdt_addr_flg,
        },
    )


def _block(lg_code, machiaza_id, blk_num, blk_id):
    return LookupRecord(
        level=LookupLevel.BLOCK,
        key=numeric_key(blk_num),
        name=blk_num,
        identifier=blk_id,
        lg_code=lg_code,
        scope={"lg_code": lg_code, "town_id": machiaza_id},
        attributes={"blk_num": blk_num, "blk_id": blk_id},
    )


def _residence(lg_code, machiaza_id, blk_id, rsdt_num, rsdt_id, rsdt_num2="", rsdt2_id=""):
    return LookupRecord(
        level=LookupLevel.RESIDENTIAL,
        key=numeric_key(rsdt_num, rsdt_num2),
        name=rsdt_num,
        identifier=rsdt_id + rsdt2_id,
        lg_code=lg_code,
        scope={"lg_code": lg_code, "town_id": machiaza_id, "block_id": blk_id},
        attributes={
            "rsdt_num": rsdt_num,
            "rsdt_id": rsdt_id,
            "rsdt_num2": rsdt_num2,
            "rsdt2_id": rsdt2_id,
        },
    )


def _parcel(lg_code, machiaza_id, prc_id, prc_num1, prc_num2="", prc_num3=""):
    return LookupRecord(
        level=LookupLevel.PARCEL,
        key=numeric_key(prc_num1, prc_num2, prc_num3),
        name=prc_num1,
        identifier=prc_id,
        lg_code=lg_code,
        scope={"lg_code": lg_code, "town_id": machiaza_id},
        attributes={"prc_num1": prc_num1, "prc_num2": prc_num2, "prc_num3": prc_num3},
    )


SAMPLE_RECORDS = [
    _pref("東京都", "130001"),
    _pref("山形県", "060003"),
    _pref("島根県", "320005"),
    _pref("京都府", "260002"),
    _pref("広島県", "340006"),
    _pref("福島県", "070009"),

    _city("東京都", "千代田区", "131016", 35.694003, 139.753634),
    _city("東京都", "港区", "131032"),
    _city("東京都", "府中市", "132063"),
    _city("東京都", "町田市", "132098"),
    _city("山形県", "山形市", "062014"),
    _city("島根県", "松江市", "322016"),
    _city("京都府", "八幡市", "262102"),
    _city("広島県", "広島市", "341002"),
    _city("広島県", "府中市", "342084"),

    _town("131016", "0056000", "紀尾井町", "", "1", 35.681411, 139.73495),
    _town("131032", "0004001", "麻布十番", "一丁目", "1", 35.655929, 139.734283),
    _town("132063", "0015002", "宮西町", "二丁目", "1", 35.669764, 139.477636),
    _town("132098", "0006001", "森野", "一丁目", "1", 35.551231, 139.441925),
    _town("132098", "0006002", "森野", "二丁目", "1", 35.548247, 139.440264),
    _town("062014", "0247002", "旅篭町", "二丁目", "1", 38.255437, 140.339126),
    _town("322016", "0083000", "末次町", "", "0", 35.467467, 133.049814),
    _town("262102", "0302000", "八幡園内", "", "0", 34.877027, 135.708529),

    _block("131016", "0056000", "1", "001"),
    _block("062014", "0247002", "3", "003"),
    _block("132098", "0006002", "2", "002"),
    _block("132098", "0006002", "20", "020"),

    _residence("131016", "0056000", "001", "3", "003"),
    _residence("062014", "0247002", "003", "25", "025"),
    _residence("132098", "0006002", "002", "22", "022"),

    _parcel("322016", "0083000", "000230001000000", "23", "10"),
    _parcel("322016", "0083000", "000230000000000", "23"),
]


@pytest.fixture
def sample_records():
    """The sample rows as LookupRecords."""
    return list(SAMPLE_RECORDS)


@pytest.fixture
def memory_store(sample_records):
    """In-memory lookup store over the sample rows."""
    return MemoryLookupStore(sample_records)
