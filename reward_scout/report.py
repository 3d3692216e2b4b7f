"""Write the files the static report page reads."""

import json
import logging
from pathlib import Path
from typing import Iterable

from . import cache
from .models import MonthAvailability, Route, RouteAvailability, month_to_dict

logger = logging.getLogger(__name__)

FLIGHTS_DATA_FILE = "flights-data.json"
ROUTES_FILE = "routes.json"
SCRAPE_META_FILE = "scrape-meta.json"
REPORT_FILE = "index.html"

REPORT_SHELL = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Reward Scout</title>
  <style>
    body { font-family: system-ui, sans-serif; margin: 2rem; color: #222; }
    select, label { margin-right: 1rem; }
    table { border-collapse: collapse; margin-top: 1rem; }
    th, td { border: 1px solid #ddd; padding: 0.3rem 0.6rem; text-align: right; }
    th { background: #f4f4f4; }
    td.date { text-align: left; }
    .saver { color: #1a7f37; font-weight: 600; }
    #meta { color: #666; font-size: 0.9rem; }
  </style>
</head>
<body>
  <h1>Reward Scout</h1>
  <p id="meta"></p>
  <label>Route <select id="route"></select></label>
  <label>Direction
    <select id="direction">
      <option value="outbound">Outbound</option>
      <option value="inbound">Inbound</option>
    </select>
  </label>
  <table id="days">
    <thead>
      <tr><th>Date</th><th>Economy</th><th>Premium</th><th>Upper</th><th>Min price</th></tr>
    </thead>
    <tbody></tbody>
  </table>
  <script>
    const CABINS = ["economy", "premium", "upper"];
    let DATA = {};

    function cell(day, cabin) {
      const points = day[cabin];
      if (points === undefined || points === null) return "<td>-</td>";
      const seats = day[cabin + "Seats"];
      const cls = day[cabin + "IsSaver"] ? " class=\\"saver\\"" : "";
      const suffix = seats === undefined || seats === null ? "" : " (" + seats + ")";
      return "<td" + cls + ">" + points.toLocaleString() + suffix + "</td>";
    }

    function render() {
      const route = document.getElementById("route").value;
      const direction = document.getElementById("direction").value;
      const days = (DATA[route] || {})[direction] || {};
      const rows = Object.keys(days).sort().map((date) => {
        const day = days[date];
        const price = day.minPrice === null || day.minPrice === undefined
          ? "-" : day.minPrice + " " + (day.currency || "");
        return "<tr><td class=\\"date\\">" + date + "</td>" +
          CABINS.map((c) => cell(day, c)).join("") + "<td>" + price + "</td></tr>";
      });
      document.querySelector("#days tbody").innerHTML = rows.join("");
    }

    Promise.all([
      fetch("flights-data.json").then((r) => r.json()),
      fetch("routes.json").then((r) => r.json()),
      fetch("scrape-meta.json").then((r) => r.json()).catch(() => ({})),
    ]).then(([data, routes, meta]) => {
      DATA = data;
      const select = document.getElementById("route");
      routes.forEach((route) => {
        const option = document.createElement("option");
        option.value = route.code;
        option.textContent = route.code + (route.name ? " - " + route.name : "");
        select.appendChild(option);
      });
      if (meta.scrapedAt) {
        document.getElementById("meta").textContent = "Last scraped " + meta.scrapedAt;
      }
      select.addEventListener("change", render);
      document.getElementById("direction").addEventListener("change", render);
      render();
    });
  </script>
</body>
</html>
"""


def merge_month_data(months: Iterable[MonthAvailability]) -> MonthAvailability:
    """Flatten several months into one date map. Later months win on repeated dates."""
    merged: MonthAvailability = {}
    for month in months:
        for date, day in month.items():
            merged[date] = day
    return merged


def build_report_data(route_data: dict[str, RouteAvailability]) -> dict:
    return {
        code: {
            "outbound": month_to_dict(merge_month_data(data.outbound)),
            "inbound": month_to_dict(merge_month_data(data.inbound)),
        }
        for code, data in route_data.items()
    }


def write_report_data(route_data: dict[str, RouteAvailability]) -> Path:
    return cache.write_output(FLIGHTS_DATA_FILE, json.dumps(build_report_data(route_data)))


def write_route_metadata(routes: Iterable[Route]) -> Path:
    rows = []
    for route in routes:
        rows.append({
            "code": route.code,
            "name": route.name,
            "group": route.group,
            "originCode": route.origin_code,
            "destinationCode": route.destination_code,
        })
    return cache.write_output(ROUTES_FILE, json.dumps(rows))


def write_scrape_metadata(scraped_at: str) -> Path:
    return cache.write_output(SCRAPE_META_FILE, json.dumps({"scrapedAt": scraped_at}))


def build_report_shell() -> Path:
    path = cache.write_output(REPORT_FILE, REPORT_SHELL)
    logger.info(f"Report shell written to {path}")
    return path
